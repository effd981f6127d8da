"""Ollama local inference provider.

Every agent maps to the single configured local model unless the config
leaves ``model`` unset, in which case the agent's own model id is sent.
"""

from __future__ import annotations

import httpx

from ..models.provider import CompletionResult
from .base import BaseProvider


class OllamaProvider(BaseProvider):
    name = "ollama"

    async def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
    ) -> CompletionResult:
        endpoint = self.config.get("endpoint", "http://localhost:11434")
        local_model = self.config.get("model") or model
        timeout = self.common.get("timeout_seconds", 300)

        body = {
            "model": local_model,
            "system": system_prompt,
            "prompt": user_prompt,
            "stream": False,
            "options": {
                "temperature": self.common.get("temperature", 0.1),
                "num_predict": max_tokens or self.config.get("max_tokens", 4000),
            },
        }

        try:
            url = f"{endpoint.rstrip('/')}/api/generate"
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            return CompletionResult(
                success=False,
                error=f"{e.response.status_code} | {e.response.text[:500]}",
                error_kind="http",
                status_code=e.response.status_code,
            )
        except httpx.TimeoutException as e:
            return CompletionResult(success=False, error=f"timeout: {e}", error_kind="timeout")
        except httpx.HTTPError as e:
            return CompletionResult(success=False, error=str(e), error_kind="transport")
        except ValueError as e:
            return CompletionResult(
                success=False, error=f"Response is not JSON: {e}", error_kind="malformed"
            )

        if not isinstance(data, dict) or "response" not in data:
            return CompletionResult(
                success=False, error="Response has no 'response' field", error_kind="malformed"
            )
        content = data.get("response") or ""
        if not content.strip():
            return CompletionResult(
                success=False, error=f"Empty response from {local_model}", error_kind="empty"
            )

        return CompletionResult(
            success=True,
            content=content,
            tokens_used={
                "input": data.get("prompt_eval_count", 0),
                "output": data.get("eval_count", 0),
            },
        )
