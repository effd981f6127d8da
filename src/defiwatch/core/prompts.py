"""Prompt construction for analysis agents and the supervisor.

Source text is split into ``// File:`` sections, classified, and packed into
the tier's token budget: primary contract files first, then custom
interfaces and libraries, then a one-paragraph note naming whatever was left
out.
"""

from __future__ import annotations

import json
import math
import re
from typing import Callable

from pydantic import BaseModel

from ..errors import InputError, InsufficientBudget
from ..models.agent import AgentSpec, AnalysisRequest, ParsedResult
from .registry import TierSpec

FILE_MARKER = re.compile(r"^//\s*File:\s*(.+?)\s*$", re.MULTILINE)

PROMPT_VARIANTS = ("normal", "strict", "educational")

SPECIALTY_FOCUS: dict[str, str] = {
    "advanced-reasoning": (
        "Reason step by step through every state transition. Look for multi-step "
        "attack paths that chain several small weaknesses into fund loss."
    ),
    "security": (
        "Focus on exploitable vulnerabilities: reentrancy, access control, "
        "unchecked external calls, tx.origin authentication, delegatecall misuse."
    ),
    "comprehensive": (
        "Cover security, gas usage and code quality evenly. Do not skip minor "
        "issues, but rank them honestly."
    ),
    "defi": (
        "Focus on economic attacks: price oracle manipulation, flash loans, "
        "front-running, MEV exposure, rounding in share and reward math."
    ),
    "gas": (
        "Focus on gas: storage layout, redundant SLOADs, unbounded loops, "
        "calldata versus memory, and cheaper equivalents for common patterns."
    ),
    "quality": (
        "Focus on maintainability: naming, NatSpec documentation, event coverage, "
        "dead code, and consistency with common Solidity conventions."
    ),
}

DEPTH_INSTRUCTIONS: dict[str, str] = {
    "standard": (
        "Perform a standard review. Report the issues you are confident about; "
        "keep descriptions short."
    ),
    "deep": (
        "Perform a deep review. Trace every external and public function, "
        "describe concrete exploit scenarios, and include code-level fixes."
    ),
}

VARIANT_INSTRUCTIONS: dict[str, str] = {
    "normal": "",
    "strict": (
        "Only report issues you are highly confident are real. Leave out "
        "speculative or style-only findings."
    ),
    "educational": (
        "Explain each issue so a developer new to smart contracts understands "
        "why it matters and how the fix works."
    ),
}

OUTPUT_FORMAT = """RETURN ONLY VALID JSON in this exact format:
{
  "overview": "Brief contract summary based on actual code",
  "securityScore": 75,
  "gasScore": 80,
  "qualityScore": 85,
  "riskLevel": "Safe|Low Risk|Medium Risk|High Risk|Critical Risk",
  "keyFindings": [
    {
      "severity": "CRITICAL|HIGH|MEDIUM|LOW|INFO",
      "title": "Specific vulnerability name",
      "description": "Clear description referencing actual code",
      "location": "Exact function/line that exists",
      "impact": "Real consequences",
      "recommendation": "Specific fix with code changes"
    }
  ],
  "gasOptimizations": [
    {"title": "...", "description": "...", "location": "...", "recommendation": "..."}
  ],
  "codeQualityIssues": [
    {"title": "...", "description": "...", "severity": "LOW|INFO", "recommendation": "..."}
  ],
  "summary": "Overall assessment based on actual analysis"
}"""

SUPERVISOR_FORMAT = """RETURN ONLY VALID JSON in this exact format:
{
  "verifiedFindings": [
    {
      "severity": "CRITICAL|HIGH|MEDIUM|LOW|INFO",
      "category": "security|gas|quality",
      "title": "...",
      "description": "...",
      "impact": "...",
      "recommendation": "...",
      "location": "..."
    }
  ],
  "falsePositives": [
    {"title": "...", "reason": "Why this finding does not apply"}
  ],
  "consolidatedScore": 75,
  "gasScore": 80,
  "qualityScore": 85,
  "finalRiskLevel": "Safe|Low Risk|Medium Risk|High Risk|Critical Risk",
  "deploymentRecommendation": "..."
}"""


class SourceFile(BaseModel):
    name: str
    content: str
    kind: str = "other"

    @property
    def tokens(self) -> int:
        return estimate_tokens(self.content)


class PreparedSource(BaseModel):
    text: str
    kept: list[str] = []
    dropped: list[str] = []
    note: str = ""

    @property
    def complete(self) -> bool:
        return not self.dropped


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def split_source_files(source_text: str, contract_name: str) -> list[SourceFile]:
    """Split ``// File: <path>`` sections. Unmarked source is one file."""
    markers = list(FILE_MARKER.finditer(source_text))
    if not markers:
        return [SourceFile(name=f"{contract_name}.sol", content=source_text)]

    files = []
    preamble = source_text[: markers[0].start()]
    if preamble.strip():
        files.append(SourceFile(name=f"{contract_name}.sol", content=preamble.strip("\n")))
    for i, marker in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(source_text)
        body = source_text[marker.end():end].strip("\n")
        files.append(SourceFile(name=marker.group(1), content=body))
    return files


_CONTRACT = re.compile(r"\bcontract\s+\w+\s*(?:is\s+[\w,\s.]+)?\{")
_CONSTRUCTOR = re.compile(r"\bconstructor\s*\([^)]*\)")
_BUSINESS_FN = re.compile(r"\bfunction\s+\w+\s*\([^)]*\)[^{;]*\b(?:external|public)\b[^{;]*\{")
_INTERFACE = re.compile(r"\binterface\s+\w+")
_LIBRARY = re.compile(r"\blibrary\s+\w+")


def _is_third_party(file: SourceFile) -> bool:
    name = file.name.lower()
    content = file.content
    return (
        "@openzeppelin" in name
        or "node_modules" in name
        or "// OpenZeppelin" in content
        or ("SPDX-License-Identifier: MIT" in content and len(content.split("\n")) < 50)
    )


def classify_file(file: SourceFile) -> str:
    """primary, support, third_party or other."""
    content = file.content
    if not content.strip():
        return "other"
    if _is_third_party(file):
        return "third_party"

    has_contract = bool(_CONTRACT.search(content))
    is_interface = bool(_INTERFACE.search(content)) and not has_contract
    is_library = bool(_LIBRARY.search(content))
    has_logic = bool(_CONSTRUCTOR.search(content) or _BUSINESS_FN.search(content))

    if has_contract and has_logic and not is_interface and not is_library:
        return "primary"
    if has_contract or is_interface or is_library:
        return "support"
    return "other"


def _dropped_note(dropped: list[SourceFile]) -> str:
    if not dropped:
        return ""
    names = ", ".join(f"{f.name} ({f.kind})" for f in dropped)
    return (
        f"{len(dropped)} file(s) were left out to stay within the prompt budget: "
        f"{names}. Assume they are standard dependencies unless the code above "
        "shows otherwise."
    )


def prepare_source(source_text: str, contract_name: str, token_budget: int) -> PreparedSource:
    """Pack the most relevant files into ``token_budget`` tokens.

    Raises:
        InputError: the source is empty.
        InsufficientBudget: not a single file fits.
    """
    if not source_text or not source_text.strip():
        raise InputError("Contract source is empty")

    files = [
        f.model_copy(update={"kind": classify_file(f)})
        for f in split_source_files(source_text, contract_name)
    ]
    files = [f for f in files if f.content.strip()]
    if not files:
        raise InputError("Contract source has no file content")

    # A single-file source is always the contract itself
    if len(files) == 1 and files[0].kind in ("other", "third_party"):
        files = [files[0].model_copy(update={"kind": "primary"})]

    priority = {"primary": 0, "support": 1, "other": 2, "third_party": 3}
    ordered = sorted(files, key=lambda f: priority[f.kind])

    eligible = {"primary", "support"}
    if not any(f.kind in eligible for f in files):
        eligible = {"other", "third_party"}

    remaining = token_budget
    kept: list[SourceFile] = []
    dropped: list[SourceFile] = []
    for f in ordered:
        if f.kind in eligible and f.tokens <= remaining:
            kept.append(f)
            remaining -= f.tokens
        else:
            dropped.append(f)

    if not kept:
        raise InsufficientBudget(
            f"No contract file fits the {token_budget}-token budget "
            f"(smallest candidate needs {min(f.tokens for f in files)})"
        )

    if len(files) == 1:
        text = kept[0].content
    else:
        text = "".join(f"// File: {f.name}\n\n{f.content}\n\n" for f in kept).rstrip("\n")

    primaries = sum(1 for f in kept if f.kind == "primary")
    note = f"Analyzed {len(kept)} of {len(files)} file(s); {primaries} primary contract(s)."
    dropped_note = _dropped_note(dropped)
    if dropped_note:
        note = f"{note} {dropped_note}"

    return PreparedSource(
        text=text,
        kept=[f.name for f in kept],
        dropped=[f.name for f in dropped],
        note=note,
    )


def _check_variant(variant: str) -> str:
    if variant not in PROMPT_VARIANTS:
        raise InputError(
            f"Unknown prompt variant: {variant} (expected one of {', '.join(PROMPT_VARIANTS)})"
        )
    return VARIANT_INSTRUCTIONS[variant]


def system_prompt_for(agent: AgentSpec) -> str:
    focus = SPECIALTY_FOCUS.get(agent.specialty, SPECIALTY_FOCUS["comprehensive"])
    return (
        f"You are an expert smart contract security auditor specializing in "
        f"{agent.specialty.replace('-', ' ')}. {focus}"
    )


def fit_prompt(
    request: AnalysisRequest,
    token_budget: int,
    render: Callable[[PreparedSource], str],
) -> tuple[str, PreparedSource]:
    """Render a prompt whose estimated size stays within ``token_budget``.

    The template is measured with an empty source first and the source gets
    whatever is left. Per-file headers and the dropped-files note can push the
    result over, in which case the source budget shrinks by the excess and the
    source is packed again.

    Raises:
        InsufficientBudget: the template alone fills the budget, or no file
            fits in what is left.
    """
    overhead = estimate_tokens(render(PreparedSource(text="")))
    if overhead >= token_budget:
        raise InsufficientBudget(
            f"Prompt template needs {overhead} tokens, leaving no room for source "
            f"in the {token_budget}-token budget"
        )

    source_budget = token_budget - overhead
    while True:
        prepared = prepare_source(request.source_text, request.contract_name, source_budget)
        prompt = render(prepared)
        excess = estimate_tokens(prompt) - token_budget
        if excess <= 0:
            return prompt, prepared
        source_budget -= excess


def _source_block(prepared: PreparedSource) -> list[str]:
    parts = ["Contract source:", "```solidity", prepared.text, "```"]
    if prepared.dropped:
        parts += ["", "Note: " + prepared.note]
    return parts


def prepare_prompt(request: AnalysisRequest, tier: TierSpec) -> tuple[str, PreparedSource]:
    """First-stage user prompt shared by every agent in ``tier``, and the source it packed."""
    variant_text = _check_variant(request.prompt_variant)

    head = [
        f"Analyze the Solidity contract `{request.contract_name}` for security "
        "vulnerabilities, gas optimization opportunities and code quality issues.",
        "",
        "Requirements:",
        "1. Only reference code that actually exists in the provided source.",
        "2. Quote exact function names and locations.",
        "3. Give actionable remediation steps.",
        "",
        DEPTH_INSTRUCTIONS[tier.depth],
    ]
    if variant_text:
        head.append(variant_text)
    head += ["", OUTPUT_FORMAT, ""]

    return fit_prompt(
        request, tier.token_budget, lambda prepared: "\n".join(head + _source_block(prepared))
    )


def build_prompt(request: AnalysisRequest, tier: TierSpec) -> str:
    return prepare_prompt(request, tier)[0]


def build_supervisor_prompt(
    request: AnalysisRequest,
    tier: TierSpec,
    parsed_results: list[ParsedResult],
    agents: dict[str, AgentSpec],
) -> str:
    """Second-stage prompt: every first-stage finding as JSON, then the source.

    The findings count against the same budget as the source, so a large
    finding set leaves less room for code.
    """
    reported = []
    for result in parsed_results:
        if not result.succeeded:
            continue
        agent = agents.get(result.agent_id)
        for f in result.findings:
            reported.append({
                "agent": agent.display_name if agent else result.agent_id,
                "specialty": agent.specialty if agent else "",
                "confidence": result.confidence.value,
                "severity": f.severity.value,
                "category": f.category.value,
                "title": f.title,
                "description": f.description,
                "location": f.code_reference,
            })

    if reported:
        findings_block = json.dumps(reported, indent=2)
        task = (
            "Several independent auditors reviewed this contract. Verify each "
            "finding below against the source: confirm it, reject it as a false "
            "positive, or merge duplicates. Add any real issue none of them found."
        )
    else:
        findings_block = "[]"
        task = (
            "No first-stage auditor produced a usable report. Review the source "
            "yourself and report every real issue you find."
        )

    head = [
        f"You are the lead auditor reconciling reports for `{request.contract_name}`.",
        task,
        "",
        "Reported findings:",
        findings_block,
        "",
        SUPERVISOR_FORMAT,
        "",
    ]
    prompt, _ = fit_prompt(
        request, tier.token_budget, lambda prepared: "\n".join(head + _source_block(prepared))
    )
    return prompt


SUPERVISOR_SYSTEM_PROMPT = (
    "You are a senior smart contract auditor. You verify other auditors' "
    "findings strictly against the code and never invent code that is not shown."
)
