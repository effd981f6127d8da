"""Shared fixtures for DeFi Watch tests."""

from __future__ import annotations

import asyncio
import copy
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import pytest

from defiwatch.core.config import DEFAULT_CONFIG
from defiwatch.core.consensus import local_consensus
from defiwatch.core.consolidator import consolidate
from defiwatch.core.registry import AgentRegistry
from defiwatch.models.agent import ParsedResult, ParseStrategy
from defiwatch.models.finding import Category, Confidence, Finding, Severity
from defiwatch.models.provider import CompletionResult
from defiwatch.models.report import ReportMetadata

Reply = Union[str, CompletionResult, Exception, None]


class FakeProvider:
    """Provider double keyed by model id.

    A reply may be text, a CompletionResult, an exception to raise, or None
    for a 503. ``delays`` holds per-model sleep seconds.
    """

    name = "fake"

    def __init__(
        self,
        replies: Optional[dict[str, Reply]] = None,
        default: Reply = None,
        delays: Optional[dict[str, float]] = None,
    ):
        self.replies = replies or {}
        self.default = default
        self.delays = delays or {}
        self.calls: list[str] = []
        self.prompts: dict[str, str] = {}

    async def complete(self, model, system_prompt, user_prompt, max_tokens=0):
        return await self.complete_with_retry(model, system_prompt, user_prompt, max_tokens)

    async def complete_with_retry(self, model, system_prompt, user_prompt, max_tokens=0):
        self.calls.append(model)
        self.prompts[model] = user_prompt
        if self.delays.get(model):
            await asyncio.sleep(self.delays[model])
        reply = self.replies.get(model, self.default)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, CompletionResult):
            return reply
        if reply is None:
            return CompletionResult(
                success=False, error="503 | upstream unavailable", error_kind="http", status_code=503
            )
        return CompletionResult(success=True, content=reply)


TEST_AGENTS_CONFIG = {
    "agents": {
        "alpha": {"name": "Alpha", "specialty": "security"},
        "beta": {"name": "Beta", "specialty": "defi"},
        "gamma": {"name": "Gamma", "specialty": "gas"},
        "judge": {"name": "Judge", "specialty": "advanced-reasoning"},
    },
    "tiers": {
        "free": {
            "agents": ["alpha", "beta", "gamma"],
            "supervisor": "judge",
            "deadline_seconds": 1,
            "supervisor_deadline_seconds": 1,
            "token_budget": 28000,
            "depth": "standard",
        },
    },
}


def structured_reply(findings: list[dict], score: int = 60, risk: str = "High Risk") -> str:
    return json.dumps({"securityScore": score, "riskLevel": risk, "keyFindings": findings})


def make_finding(
    title: str,
    severity: Severity = Severity.HIGH,
    agent: str = "alpha",
    category: Category = Category.SECURITY,
) -> Finding:
    return Finding(
        id=f"{agent}-{title[:8]}",
        title=title,
        severity=severity,
        category=category,
        reported_by=agent,
        confidence=Confidence.HIGH,
    )


def make_result(agent: str, findings: list[Finding], succeeded: bool = True) -> ParsedResult:
    return ParsedResult(
        agent_id=agent,
        succeeded=succeeded,
        findings=findings if succeeded else [],
        parse_strategy=ParseStrategy.DIRECT,
        confidence=Confidence.HIGH,
        error=None if succeeded else "503 | upstream unavailable",
    )


@pytest.fixture
def registry() -> AgentRegistry:
    return AgentRegistry.from_config(TEST_AGENTS_CONFIG)


@pytest.fixture
def free_tier(registry: AgentRegistry):
    return registry.tier("free")


@pytest.fixture
def test_config() -> dict:
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["agents"] = copy.deepcopy(TEST_AGENTS_CONFIG["agents"])
    config["tiers"] = copy.deepcopy(TEST_AGENTS_CONFIG["tiers"])
    return config


@pytest.fixture
def vault_source() -> str:
    return """// SPDX-License-Identifier: GPL-3.0
pragma solidity ^0.8.19;

contract Vault {
    mapping(address => uint256) public balances;
    address public feeRecipient;

    constructor() {
        feeRecipient = msg.sender;
    }

    function deposit() external payable {
        balances[msg.sender] += msg.value;
    }

    function withdraw() external {
        uint256 amount = balances[msg.sender];
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok);
        balances[msg.sender] = 0;
    }

    function setFeeRecipient(address recipient) external {
        feeRecipient = recipient;
    }
}
"""


@pytest.fixture
def selfdestruct_source() -> str:
    return """pragma solidity ^0.8.19;

contract Killable {
    address owner;

    constructor() {
        owner = msg.sender;
    }

    function kill() external {
        selfdestruct(payable(owner));
    }
}
"""


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """A project directory with a .defiwatch config."""
    project = tmp_path / "audit-project"
    (project / ".defiwatch").mkdir(parents=True)
    (project / ".defiwatch" / "config.yaml").write_text(
        "ai:\n  provider: ollama\ndispatch:\n  max_concurrency: 2\n",
        encoding="utf-8",
    )
    return project


@pytest.fixture
def sample_report():
    """Report over two agents that agree on a reentrancy bug."""
    results = [
        make_result("alpha", [
            make_finding("Reentrancy in withdraw()", Severity.CRITICAL, "alpha"),
            make_finding("Cache array length", Severity.LOW, "alpha", Category.GAS),
        ]),
        make_result("beta", [make_finding("reentrancy in withdraw", Severity.CRITICAL, "beta")]),
        make_result("gamma", [], succeeded=False),
    ]
    metadata = ReportMetadata(
        contract_name="Vault",
        tier="free",
        started_at=datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc),
        finished_at=datetime(2026, 1, 5, 12, 0, 42, tzinfo=timezone.utc),
        version="2.0.0",
    )
    return consolidate(results, local_consensus(results), metadata)
