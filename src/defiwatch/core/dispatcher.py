"""Concurrent fan-out of one prompt to every agent in a tier.

Each agent call runs in its own task under a shared semaphore and its own
deadline. A failed or late agent only affects its own result slot; the
dispatcher waits for every call to settle before returning.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from rich.console import Console

from ..errors import TransportError
from ..models.agent import AgentSpec, RawAgentResponse
from ..providers.base import AIProvider
from ..utils.sanitize import sanitize_error, truncate
from .prompts import system_prompt_for

console = Console()

DEFAULT_MAX_CONCURRENCY = 8


async def call_agent(
    agent: AgentSpec,
    system_prompt: str,
    prompt: str,
    provider: AIProvider,
    deadline_seconds: float,
    max_tokens: int = 0,
) -> str:
    """One agent call. Returns the reply text or raises TransportError."""
    try:
        result = await asyncio.wait_for(
            provider.complete_with_retry(agent.model_id, system_prompt, prompt, max_tokens),
            timeout=deadline_seconds,
        )
    except asyncio.TimeoutError:
        raise TransportError(
            agent.id, f"no reply within {deadline_seconds:g}s", kind="timeout"
        ) from None

    if not result.success:
        raise TransportError(
            agent.id,
            sanitize_error(result.error or "unknown provider error"),
            kind=result.error_kind or "transport",
        )
    if not result.content or not result.content.strip():
        raise TransportError(agent.id, "empty reply", kind="empty")
    return result.content


async def dispatch(
    agents: list[AgentSpec],
    prompt: str,
    provider: AIProvider,
    deadline_seconds: float = 90,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    max_tokens: int = 0,
    system_prompt: Optional[Callable[[AgentSpec], str]] = None,
    quiet: bool = False,
) -> list[RawAgentResponse]:
    """Send ``prompt`` to every agent concurrently.

    Returns one RawAgentResponse per agent, in the order of ``agents``.
    Never raises for a failed call.
    """
    if not agents:
        return []

    system_for = system_prompt or system_prompt_for
    semaphore = asyncio.Semaphore(max(1, min(len(agents), max_concurrency)))
    slots: list[Optional[RawAgentResponse]] = [None] * len(agents)

    async def _run(index: int, agent: AgentSpec) -> None:
        async with semaphore:
            started = time.monotonic()
            try:
                text = await call_agent(
                    agent, system_for(agent), prompt, provider, deadline_seconds, max_tokens
                )
                response = RawAgentResponse(
                    agent_id=agent.id,
                    text=text,
                    elapsed_seconds=round(time.monotonic() - started, 2),
                )
                if not quiet:
                    console.print(
                        f"  [green]OK[/green] {agent.display_name} "
                        f"({response.elapsed_seconds:.1f}s, {len(text)} chars)"
                    )
            except TransportError as e:
                response = RawAgentResponse(
                    agent_id=agent.id,
                    error=str(e),
                    error_kind=e.kind,
                    elapsed_seconds=round(time.monotonic() - started, 2),
                )
                if not quiet:
                    console.print(
                        f"  [red]FAILED[/red] {agent.display_name} [{e.kind}]: {truncate(str(e), 160)}"
                    )
            except Exception as e:
                # Anything unexpected stays inside this agent's slot
                response = RawAgentResponse(
                    agent_id=agent.id,
                    error=sanitize_error(f"{agent.id}: {type(e).__name__}: {e}"),
                    error_kind="transport",
                    elapsed_seconds=round(time.monotonic() - started, 2),
                )
                if not quiet:
                    console.print(
                        f"  [red]FAILED[/red] {agent.display_name}: {truncate(str(e), 160)}"
                    )
            slots[index] = response

    await asyncio.gather(*(_run(i, agent) for i, agent in enumerate(agents)))
    return [slot for slot in slots if slot is not None]
