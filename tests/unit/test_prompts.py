"""Tests for core/prompts.py."""

from __future__ import annotations

import pytest

from defiwatch.core.prompts import (
    SourceFile,
    build_prompt,
    build_supervisor_prompt,
    classify_file,
    estimate_tokens,
    prepare_source,
    split_source_files,
    system_prompt_for,
)
from defiwatch.errors import InputError, InsufficientBudget
from defiwatch.models.agent import AnalysisRequest
from defiwatch.models.finding import Severity

from conftest import make_finding, make_result

IERC20 = (
    "// SPDX-License-Identifier: MIT\n"
    "interface IERC20 {\n"
    "    function totalSupply() external view returns (uint256);\n"
    "}\n"
)

ILENDER = "interface ILender {\n    function lend(uint256 amount) external;\n}\n"


@pytest.fixture
def multi_file(vault_source: str) -> str:
    return (
        f"// File: contracts/Vault.sol\n{vault_source}\n"
        f"// File: @openzeppelin/contracts/token/ERC20/IERC20.sol\n{IERC20}\n"
        f"// File: contracts/ILender.sol\n{ILENDER}"
    )


class TestSplitAndClassify:
    def test_unmarked_source_is_one_file(self, vault_source):
        files = split_source_files(vault_source, "Vault")
        assert [f.name for f in files] == ["Vault.sol"]

    def test_markers_split(self, multi_file):
        files = split_source_files(multi_file, "Vault")
        assert [f.name for f in files] == [
            "contracts/Vault.sol",
            "@openzeppelin/contracts/token/ERC20/IERC20.sol",
            "contracts/ILender.sol",
        ]

    def test_preamble_kept(self):
        text = "pragma solidity ^0.8.0;\n// File: a.sol\ncontract A {}\n"
        files = split_source_files(text, "Main")
        assert files[0].name == "Main.sol"

    def test_classify(self, vault_source):
        assert classify_file(SourceFile(name="Vault.sol", content=vault_source)) == "primary"
        assert classify_file(SourceFile(name="ILender.sol", content=ILENDER)) == "support"
        assert classify_file(
            SourceFile(name="@openzeppelin/contracts/token/ERC20/IERC20.sol", content=IERC20)
        ) == "third_party"
        assert classify_file(SourceFile(name="x.sol", content="  ")) == "other"

    def test_estimate_tokens(self):
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0


class TestPrepareSource:
    def test_single_file_kept_whole(self, vault_source):
        prepared = prepare_source(vault_source, "Vault", 28000)
        assert prepared.text == vault_source
        assert prepared.complete

    def test_third_party_dropped(self, multi_file):
        prepared = prepare_source(multi_file, "Vault", 28000)
        assert prepared.kept == ["contracts/Vault.sol", "contracts/ILender.sol"]
        assert prepared.dropped == ["@openzeppelin/contracts/token/ERC20/IERC20.sol"]
        assert prepared.note.startswith("Analyzed 2 of 3 file(s); 1 primary contract(s).")
        assert "// File: contracts/ILender.sol" in prepared.text

    def test_budget_prefers_primary(self, multi_file):
        primary = split_source_files(multi_file, "Vault")[0]
        prepared = prepare_source(multi_file, "Vault", primary.tokens)
        assert prepared.kept == ["contracts/Vault.sol"]
        assert "contracts/ILender.sol (support)" in prepared.note

    def test_insufficient_budget(self, vault_source):
        with pytest.raises(InsufficientBudget):
            prepare_source(vault_source, "Vault", 10)

    def test_insufficient_budget_is_input_error(self, vault_source):
        with pytest.raises(InputError):
            prepare_source(vault_source, "Vault", 10)

    def test_empty_source(self):
        with pytest.raises(InputError, match="empty"):
            prepare_source("\n  \n", "Vault", 28000)


class TestBuildPrompt:
    def test_contains_source_and_format(self, free_tier, vault_source):
        request = AnalysisRequest(contract_name="Vault", source_text=vault_source)
        prompt = build_prompt(request, free_tier)
        assert "`Vault`" in prompt
        assert "function withdraw()" in prompt
        assert "RETURN ONLY VALID JSON" in prompt
        assert "standard review" in prompt

    def test_strict_variant(self, free_tier, vault_source):
        request = AnalysisRequest(
            contract_name="Vault", source_text=vault_source, prompt_variant="strict"
        )
        assert "highly confident" in build_prompt(request, free_tier)

    def test_unknown_variant(self, free_tier, vault_source):
        request = AnalysisRequest(
            contract_name="Vault", source_text=vault_source, prompt_variant="poetic"
        )
        with pytest.raises(InputError, match="poetic"):
            build_prompt(request, free_tier)

    def test_deep_tier(self, free_tier, vault_source):
        tier = free_tier.model_copy(update={"depth": "deep"})
        request = AnalysisRequest(contract_name="Vault", source_text=vault_source)
        assert "deep review" in build_prompt(request, tier)

    def test_dropped_files_noted(self, free_tier, multi_file):
        request = AnalysisRequest(contract_name="Vault", source_text=multi_file)
        assert "Note: Analyzed 2 of 3" in build_prompt(request, free_tier)

    def test_system_prompt(self, registry):
        assert "specializing in advanced reasoning" in system_prompt_for(registry.find_agent("judge"))


class TestSupervisorPrompt:
    def test_lists_findings_with_agent_names(self, free_tier, registry, vault_source):
        request = AnalysisRequest(contract_name="Vault", source_text=vault_source)
        results = [
            make_result("alpha", [make_finding("Reentrancy", Severity.CRITICAL, "alpha")]),
            make_result("beta", [], succeeded=False),
        ]
        agents = {a.id: a for a in free_tier.agents}
        prompt = build_supervisor_prompt(request, free_tier, results, agents)
        assert "lead auditor" in prompt
        assert '"agent": "Alpha"' in prompt
        assert '"severity": "CRITICAL"' in prompt
        assert "verifiedFindings" in prompt


class TestPromptBudget:
    def test_template_counts_against_budget(self, free_tier):
        source = "contract Big {\n" + "    uint256 a;\n" * 1596 + "}\n"
        assert estimate_tokens(source) <= 6000
        tier = free_tier.model_copy(update={"token_budget": 6000})
        request = AnalysisRequest(contract_name="Big", source_text=source)
        with pytest.raises(InsufficientBudget):
            build_prompt(request, tier)

    def test_template_alone_too_large(self, free_tier, vault_source):
        tier = free_tier.model_copy(update={"token_budget": 100})
        request = AnalysisRequest(contract_name="Vault", source_text=vault_source)
        with pytest.raises(InsufficientBudget, match="template"):
            build_prompt(request, tier)

    def test_prompt_within_budget(self, free_tier, multi_file):
        request = AnalysisRequest(contract_name="Vault", source_text=multi_file)
        budget = estimate_tokens(build_prompt(request, free_tier)) - 1
        tier = free_tier.model_copy(update={"token_budget": budget})

        prompt = build_prompt(request, tier)
        assert estimate_tokens(prompt) <= budget
        assert "function withdraw()" in prompt
        assert "contracts/ILender.sol (support)" in prompt

    def test_supervisor_prompt_within_budget(self, free_tier, multi_file):
        request = AnalysisRequest(contract_name="Vault", source_text=multi_file)
        results = [make_result("alpha", [make_finding("Reentrancy", Severity.CRITICAL, "alpha")])]
        agents = {a.id: a for a in free_tier.agents}
        budget = estimate_tokens(build_supervisor_prompt(request, free_tier, results, agents)) - 1
        tier = free_tier.model_copy(update={"token_budget": budget})

        prompt = build_supervisor_prompt(request, tier, results, agents)
        assert estimate_tokens(prompt) <= budget
        assert '"severity": "CRITICAL"' in prompt
        assert "function withdraw()" in prompt

    def test_findings_count_against_supervisor_budget(self, free_tier, vault_source):
        request = AnalysisRequest(contract_name="Vault", source_text=vault_source)
        findings = [make_finding(f"Issue {i}", Severity.LOW, "alpha") for i in range(200)]
        tier = free_tier.model_copy(update={"token_budget": 2000})
        agents = {a.id: a for a in free_tier.agents}
        with pytest.raises(InsufficientBudget):
            build_supervisor_prompt(request, tier, [make_result("alpha", findings)], agents)
