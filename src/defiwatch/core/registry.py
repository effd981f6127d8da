"""Agent registry: which analysis agents run in which tier.

Built once from configuration and never mutated afterwards.
"""

from __future__ import annotations

from functools import lru_cache
from types import MappingProxyType
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict

from ..errors import ConfigError
from .config import DEFAULT_CONFIG
from ..models.agent import AgentSpec

DEPTHS = ("standard", "deep")


class TierSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    agents: tuple[AgentSpec, ...]
    supervisor: AgentSpec
    deadline_seconds: float = 90
    supervisor_deadline_seconds: float = 120
    token_budget: int = 28000
    depth: str = "standard"


class AgentRegistry:
    """Read-only view over the configured agents and tiers."""

    def __init__(self, tiers: Mapping[str, TierSpec]):
        if not tiers:
            raise ConfigError("No tiers configured")
        self._tiers = MappingProxyType(dict(tiers))

    @classmethod
    def from_config(cls, config: dict) -> "AgentRegistry":
        agent_defs: dict = config.get("agents", {})
        tier_defs: dict = config.get("tiers", {})

        def _spec(agent_id: str, tier: str) -> AgentSpec:
            agent_def = agent_defs.get(agent_id)
            if agent_def is None:
                raise ConfigError(f"Tier '{tier}' references unknown agent: {agent_id}")
            return AgentSpec(
                id=agent_id,
                display_name=agent_def.get("name", agent_id),
                specialty=agent_def.get("specialty", "security"),
                tier=tier,
                model=agent_def.get("model", ""),
            )

        tiers: dict[str, TierSpec] = {}
        for tier_name, tier_def in tier_defs.items():
            agent_ids = tier_def.get("agents") or []
            if not agent_ids:
                raise ConfigError(f"Tier '{tier_name}' has no agents")
            supervisor_id = tier_def.get("supervisor")
            if not supervisor_id:
                raise ConfigError(f"Tier '{tier_name}' has no supervisor")
            depth = tier_def.get("depth", "standard")
            if depth not in DEPTHS:
                raise ConfigError(f"Tier '{tier_name}' has unknown depth: {depth}")

            tiers[tier_name] = TierSpec(
                name=tier_name,
                agents=tuple(_spec(a, tier_name) for a in agent_ids),
                supervisor=_spec(supervisor_id, tier_name),
                deadline_seconds=float(tier_def.get("deadline_seconds", 90)),
                supervisor_deadline_seconds=float(tier_def.get("supervisor_deadline_seconds", 120)),
                token_budget=int(tier_def.get("token_budget", 28000)),
                depth=depth,
            )

        return cls(tiers)

    @property
    def tier_names(self) -> list[str]:
        return list(self._tiers.keys())

    def tier(self, name: str) -> TierSpec:
        spec = self._tiers.get(name)
        if spec is None:
            raise ConfigError(f"Unknown tier: {name} (available: {', '.join(self._tiers)})")
        return spec

    def select_agents(self, tier: str) -> tuple[list[AgentSpec], AgentSpec]:
        """Return (agents, supervisor) for a tier."""
        spec = self.tier(tier)
        return list(spec.agents), spec.supervisor

    def find_agent(self, agent_id: str) -> Optional[AgentSpec]:
        for spec in self._tiers.values():
            for agent in (*spec.agents, spec.supervisor):
                if agent.id == agent_id:
                    return agent
        return None


@lru_cache(maxsize=1)
def default_registry() -> AgentRegistry:
    """Registry built from the built-in defaults."""
    return AgentRegistry.from_config(DEFAULT_CONFIG)


def select_agents(
    tier: str, registry: Optional[AgentRegistry] = None
) -> tuple[list[AgentSpec], AgentSpec]:
    return (registry or default_registry()).select_agents(tier)
