"""Audit pipeline.

State trail per audit::

    PENDING -> DISPATCHED -> NORMALIZING -> VERIFYING [-> VERIFYING_FALLBACK] -> CONSOLIDATED

Only ``InputError`` escapes ``run``. Every upstream failure is absorbed and
shows up in the report as reduced confidence.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console

from .. import __version__
from ..errors import AllAgentsFailed, ConfigError, InputError
from ..models.agent import AnalysisRequest, ParsedResult
from ..models.report import AuditState, ConsolidatedReport, ReportMetadata
from ..providers.base import AIProvider, get_ai_provider
from .config import DEFAULT_CONFIG
from .consolidator import consolidate
from .dispatcher import DEFAULT_MAX_CONCURRENCY, dispatch
from .normalizer import normalize
from .prompts import prepare_prompt
from .registry import AgentRegistry
from .scoring import ScoringPolicy
from .sink import ReportSink, persist_report
from .supervisor import verify

console = Console()


def ensure_any_succeeded(parsed: list[ParsedResult]) -> None:
    if not any(r.succeeded for r in parsed):
        raise AllAgentsFailed(f"All {len(parsed)} agent call(s) failed")


class AuditPipeline:
    """One configured pipeline; ``run`` may be called for many contracts."""

    def __init__(
        self,
        config: Optional[dict] = None,
        provider: Optional[AIProvider] = None,
        registry: Optional[AgentRegistry] = None,
        quiet: bool = False,
    ):
        self.config = config if config is not None else copy.deepcopy(DEFAULT_CONFIG)
        self.registry = registry or AgentRegistry.from_config(self.config)
        self.provider = provider or get_ai_provider(self.config)
        self.policy = ScoringPolicy.from_config(self.config)
        self.max_concurrency = int(
            self.config.get("dispatch", {}).get("max_concurrency", DEFAULT_MAX_CONCURRENCY)
        )
        self.max_tokens = int(
            self.config.get("ai", {}).get(self.provider.name, {}).get("max_tokens", 0)
        )
        self.quiet = quiet

    def _print(self, message: str = "") -> None:
        if not self.quiet:
            console.print(message)

    async def run(
        self,
        source_text: str,
        contract_name: str,
        tier: str = "free",
        prompt_variant: str = "normal",
    ) -> ConsolidatedReport:
        states = [AuditState.PENDING]
        started_at = datetime.now(timezone.utc)

        if not source_text or not source_text.strip():
            raise InputError("Contract source is empty")
        try:
            tier_spec = self.registry.tier(tier)
        except ConfigError as e:
            raise InputError(str(e)) from e

        request = AnalysisRequest(
            contract_name=contract_name or "Contract",
            source_text=source_text,
            tier=tier,
            prompt_variant=prompt_variant,
        )
        prompt, prepared = prepare_prompt(request, tier_spec)
        agents = list(tier_spec.agents)

        self._print()
        self._print("  [bold cyan]DEFI WATCH[/bold cyan] v" + __version__)
        self._print(f"  Contract: [white]{request.contract_name}[/white]")
        self._print(f"  Tier:     [white]{tier.upper()}[/white] ({len(agents)} agents)")
        self._print(f"  Source:   {prepared.note}")
        self._print()

        states.append(AuditState.DISPATCHED)
        raw_responses = await dispatch(
            agents,
            prompt,
            self.provider,
            deadline_seconds=tier_spec.deadline_seconds,
            max_concurrency=self.max_concurrency,
            max_tokens=self.max_tokens,
            quiet=self.quiet,
        )

        states.append(AuditState.NORMALIZING)
        parsed = [normalize(raw, self.policy) for raw in raw_responses]
        for result in parsed:
            if result.succeeded:
                self._print(
                    f"  [dim]{result.agent_id}: {result.parse_strategy.value}, "
                    f"{len(result.findings)} finding(s), confidence {result.confidence.value}[/dim]"
                )

        try:
            ensure_any_succeeded(parsed)
        except AllAgentsFailed as e:
            self._print(f"  [yellow]WARN[/yellow] {e}; continuing with low confidence")

        states.append(AuditState.VERIFYING)
        verdict = await verify(
            source_text,
            parsed,
            request=request,
            tier=tier_spec,
            provider=self.provider,
            agents={a.id: a for a in agents},
            policy=self.policy,
            quiet=self.quiet,
        )
        if not verdict.supervisor_verified:
            states.append(AuditState.VERIFYING_FALLBACK)
        states.append(AuditState.CONSOLIDATED)

        metadata = ReportMetadata(
            contract_name=request.contract_name,
            tier=tier,
            prompt_variant=prompt_variant,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            source_note=prepared.note,
            states=states,
            version=__version__,
        )
        report = consolidate(parsed, verdict, metadata, agents)

        color = {
            "Safe": "green",
            "Low Risk": "green",
            "Medium Risk": "yellow",
        }.get(report.risk_level.value, "red")
        self._print(
            f"\n  [{color}]Risk: {report.risk_level.value} "
            f"(score {report.scores.overall}/100)[/{color}]"
        )
        return report


async def run_audit(
    source_text: str,
    contract_name: str,
    tier: str = "free",
    *,
    prompt_variant: str = "normal",
    config: Optional[dict] = None,
    provider: Optional[AIProvider] = None,
    registry: Optional[AgentRegistry] = None,
    sink: Optional[ReportSink] = None,
    quiet: bool = False,
) -> ConsolidatedReport:
    """Audit one contract and return the consolidated report.

    Always returns a report for upstream failures; raises ``InputError``
    only for caller mistakes such as an empty source or an unknown tier.
    """
    try:
        pipeline = AuditPipeline(config=config, provider=provider, registry=registry, quiet=quiet)
    except ConfigError as e:
        raise InputError(f"Invalid configuration: {e}") from e

    report = await pipeline.run(source_text, contract_name, tier, prompt_variant)
    if sink is not None:
        persist_report(report, sink, quiet=quiet)
    return report
