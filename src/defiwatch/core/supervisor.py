"""Second-stage verification of first-stage findings.

The supervisor agent sees the source plus every first-stage finding and
returns a reconciled verdict. Its reply goes through the same normalizer as
any agent. When the call fails or the reply is unusable, the verdict comes
from local consensus, or from keyword analysis of the source when no agent
succeeded at all.
"""

from __future__ import annotations

from typing import Optional

from rich.console import Console

from ..errors import InsufficientBudget, SupervisorUnavailable, TransportError
from ..models.agent import AgentSpec, AnalysisRequest, ParsedResult, ParseStrategy, RawAgentResponse
from ..models.finding import Confidence, Finding
from ..models.report import SupervisorVerdict
from ..providers.base import AIProvider
from ..utils.sanitize import truncate
from .consensus import category_scores, finding_key, heuristic_verdict, local_consensus
from .dispatcher import call_agent
from .normalizer import normalize
from .prompts import SUPERVISOR_SYSTEM_PROMPT, build_supervisor_prompt
from .registry import TierSpec
from .scoring import DEFAULT_POLICY, ScoringPolicy, deployment_recommendation

console = Console()


def is_usable(parsed: ParsedResult) -> bool:
    """Structured replies always count; heuristic ones need a keyword hit."""
    if not parsed.succeeded:
        return False
    return parsed.parse_strategy != ParseStrategy.HEURISTIC or bool(parsed.matched_keywords)


def verdict_from_supervisor(
    parsed: ParsedResult,
    results: list[ParsedResult],
    supervisor_name: str,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> SupervisorVerdict:
    first_stage: dict[tuple[str, str], set[str]] = {}
    for result in results:
        if not result.succeeded:
            continue
        for f in result.findings:
            first_stage.setdefault(finding_key(f), set()).add(f.reported_by)

    by_key: dict[tuple[str, str], Finding] = {}
    for f in parsed.findings:
        key = finding_key(f)
        current = by_key.get(key)
        if current is None or f.severity.rank < current.severity.rank:
            by_key[key] = f

    verified: list[Finding] = []
    for key, f in by_key.items():
        reporters = sorted(first_stage.get(key, set()))
        verified.append(f.model_copy(update={
            "verified": True,
            "confidence": Confidence.HIGH if len(reporters) >= 2 else Confidence.MEDIUM,
            "contributors": reporters or [parsed.agent_id],
        }))
    verified.sort(key=lambda f: (f.severity.rank, finding_key(f)))

    if parsed.scores_reported:
        scores = parsed.scores
    else:
        scores = category_scores(verified, policy.penalty_score(verified))
    risk = parsed.risk_level or policy.risk_level(verified, scores.overall)

    return SupervisorVerdict(
        verified_findings=verified,
        false_positives=parsed.false_positives,
        scores=scores,
        risk_level=risk,
        deployment_recommendation=parsed.deployment_recommendation
        or deployment_recommendation(risk),
        supervisor_name=supervisor_name,
        supervisor_verified=True,
        parse_strategy=parsed.parse_strategy,
        notes=list(parsed.analysis_notes),
    )


async def ask_supervisor(
    prompt: str,
    supervisor: AgentSpec,
    provider: AIProvider,
    deadline_seconds: float,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> ParsedResult:
    """One supervisor call. Raises SupervisorUnavailable on any failure."""
    try:
        text = await call_agent(
            supervisor, SUPERVISOR_SYSTEM_PROMPT, prompt, provider, deadline_seconds
        )
    except TransportError as e:
        raise SupervisorUnavailable(f"{e.kind}: {e}") from e

    parsed = normalize(RawAgentResponse(agent_id=supervisor.id, text=text), policy)
    if not is_usable(parsed):
        raise SupervisorUnavailable(
            f"{supervisor.id}: reply had no structure and no recognizable findings"
        )
    return parsed


async def verify(
    source_text: str,
    parsed_results: list[ParsedResult],
    *,
    request: Optional[AnalysisRequest] = None,
    tier: Optional[TierSpec] = None,
    provider: Optional[AIProvider] = None,
    agents: Optional[dict[str, AgentSpec]] = None,
    policy: ScoringPolicy = DEFAULT_POLICY,
    quiet: bool = False,
) -> SupervisorVerdict:
    """Reconcile first-stage results into one verdict.

    Without a provider or tier the supervisor call is skipped and the local
    fallback decides.
    """
    any_succeeded = any(r.succeeded for r in parsed_results)

    try:
        if provider is None or tier is None:
            raise SupervisorUnavailable("no supervisor configured")
        request = request or AnalysisRequest(
            contract_name="Contract", source_text=source_text, tier=tier.name
        )
        prompt = build_supervisor_prompt(request, tier, parsed_results, agents or {})
        if not quiet:
            console.print(f"  [cyan]Verifying with {tier.supervisor.display_name}...[/cyan]")
        parsed = await ask_supervisor(
            prompt, tier.supervisor, provider, tier.supervisor_deadline_seconds, policy
        )
    except (SupervisorUnavailable, InsufficientBudget) as e:
        reason = f"Supervisor unavailable: {truncate(str(e), 200)}"
        if not quiet:
            console.print(f"  [yellow]WARN[/yellow] {reason}")
        if any_succeeded:
            return local_consensus(parsed_results, policy, notes=[reason])
        return heuristic_verdict(source_text, policy, notes=[reason])

    if not quiet:
        console.print(
            f"  [green]OK[/green] Supervisor {tier.supervisor.display_name} "
            f"({parsed.parse_strategy.value}, {len(parsed.findings)} findings)"
        )
    return verdict_from_supervisor(parsed, parsed_results, tier.supervisor.display_name, policy)
