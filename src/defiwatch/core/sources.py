"""Verified contract source from Etherscan-compatible block explorers."""

from __future__ import annotations

import json
import os
import re
from typing import Optional

import httpx
from pydantic import BaseModel

from ..errors import ConfigError, InputError, SourceFetchError, SourceNotVerified
from ..utils.sanitize import sanitize_error
from .config import DEFAULT_CONFIG

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ContractSource(BaseModel):
    address: str
    network: str
    name: str
    text: str
    compiler: str = "Unknown"
    is_proxy: bool = False
    implementation_address: Optional[str] = None
    explorer_url: str = ""


def flatten_multi_file_source(raw: str) -> str:
    """Standard-JSON sources become ``// File: <path>`` sections.

    Explorers return multi-file sources as ``{{ ... }}`` (double braces) or
    as a plain ``{path: {content}}`` map. Anything else is returned as-is.
    """
    text = raw.strip()
    if not text.startswith("{"):
        return raw
    if text.startswith("{{") and text.endswith("}}"):
        text = text[1:-1]
    try:
        data = json.loads(text)
    except ValueError:
        return raw
    if not isinstance(data, dict):
        return raw

    sources = data.get("sources", data)
    if not isinstance(sources, dict):
        return raw
    sections = [
        f"// File: {path}\n\n{entry['content']}"
        for path, entry in sources.items()
        if isinstance(entry, dict) and entry.get("content")
    ]
    return "\n\n".join(sections) if sections else raw


class EtherscanSource:
    """Fetches verified source code through the explorer ``getsourcecode`` API."""

    def __init__(self, config: Optional[dict] = None):
        explorer = (config or DEFAULT_CONFIG).get("explorer") or DEFAULT_CONFIG["explorer"]
        self.networks: dict = explorer.get("networks", {})
        self.timeout = explorer.get("timeout_seconds", 30)

    def _network(self, network: str) -> dict:
        settings = self.networks.get(network.lower())
        if settings is None:
            raise ConfigError(
                f"Unknown network: {network} (available: {', '.join(self.networks)})"
            )
        return settings

    def _api_key(self, settings: dict) -> Optional[str]:
        key = os.environ.get(settings.get("api_key_env", "ETHERSCAN_API_KEY"))
        if not key and settings.get("fallback_key_env"):
            key = os.environ.get(settings["fallback_key_env"])
        return key

    def explorer_url(self, address: str, network: str = "mainnet") -> str:
        site = self._network(network).get("site_url", "https://etherscan.io")
        return f"{site}/address/{address}"

    async def fetch_source(self, address: str, network: str = "mainnet") -> ContractSource:
        """Return the verified source for ``address``.

        Raises:
            InputError: malformed address.
            ConfigError: unknown network or missing API key.
            SourceFetchError: explorer unreachable or returned a non-2xx status.
            SourceNotVerified: the explorer has no verified source.
        """
        if not ADDRESS_RE.match(address or ""):
            raise InputError(f"Not a contract address: {address!r}")

        settings = self._network(network)
        api_key = self._api_key(settings)
        if not api_key:
            raise ConfigError(
                f"API key not found in environment variable: {settings.get('api_key_env')}"
            )

        params = {
            "module": "contract",
            "action": "getsourcecode",
            "address": address,
            "apikey": api_key,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(settings["api_url"], params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise SourceFetchError(
                f"Explorer returned {e.response.status_code} for {address}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise SourceFetchError(sanitize_error(f"Explorer request failed: {e}")) from e

        if not isinstance(data, dict):
            raise SourceFetchError(f"Explorer returned an unexpected payload for {address}")
        results = data.get("result")
        if data.get("status") != "1" or not isinstance(results, list) or not results:
            raise SourceNotVerified(f"No verified source for {address} on {network}")

        entry = results[0]
        source_code = entry.get("SourceCode") or ""
        if not source_code.strip():
            raise SourceNotVerified(f"Contract {address} on {network} is not verified")

        return ContractSource(
            address=address,
            network=network,
            name=entry.get("ContractName") or f"Contract-{address[:8]}",
            text=flatten_multi_file_source(source_code),
            compiler=entry.get("CompilerVersion") or "Unknown",
            is_proxy=entry.get("Proxy") == "1",
            implementation_address=entry.get("Implementation") or None,
            explorer_url=self.explorer_url(address, network),
        )
