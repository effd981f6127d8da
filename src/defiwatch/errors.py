"""Exception types for the audit pipeline.

Only ``InputError`` (and its subclasses) ever escapes ``run_audit``. The other
types name failure modes that are recovered inside the pipeline and show up
in the report as reduced confidence.
"""

from __future__ import annotations

__all__ = [
    "WatchdogError",
    "InputError",
    "InsufficientBudget",
    "ConfigError",
    "TransportError",
    "SupervisorUnavailable",
    "AllAgentsFailed",
    "SourceNotVerified",
    "SourceFetchError",
]


class WatchdogError(Exception):
    """Base exception for all DeFi Watch errors"""


class InputError(WatchdogError):
    """Raised for caller mistakes: empty source, unknown prompt variant, etc."""


class InsufficientBudget(InputError):
    """Raised when no part of the contract source fits the prompt budget"""


class ConfigError(WatchdogError):
    """Raised when configuration names an unknown tier, agent or provider"""


class TransportError(WatchdogError):
    """A single agent call failed. Recovered per agent by the dispatcher."""

    def __init__(self, agent_id: str, message: str, kind: str = "transport"):
        super().__init__(f"{agent_id}: {message}")
        self.agent_id = agent_id
        self.kind = kind


class SupervisorUnavailable(WatchdogError):
    """The supervisor reply was unusable. Recovered by local consensus."""


class AllAgentsFailed(WatchdogError):
    """No first-stage agent produced a reply. Recovered by heuristic synthesis."""


class SourceNotVerified(WatchdogError):
    """The explorer has no verified source for the requested address"""


class SourceFetchError(WatchdogError):
    """The block explorer could not be reached or returned an error"""
