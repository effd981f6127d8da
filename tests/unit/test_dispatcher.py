"""Tests for core/dispatcher.py."""

from __future__ import annotations

import asyncio

import pytest

from defiwatch.core.dispatcher import call_agent, dispatch
from defiwatch.errors import TransportError

from conftest import FakeProvider


class CountingProvider(FakeProvider):
    """Records the peak number of calls in flight."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.active = 0
        self.peak = 0

    async def complete_with_retry(self, model, system_prompt, user_prompt, max_tokens=0):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
            return await super().complete_with_retry(model, system_prompt, user_prompt, max_tokens)
        finally:
            self.active -= 1


class TestDispatch:
    @pytest.mark.asyncio
    async def test_results_in_agent_order(self, free_tier):
        provider = FakeProvider(default="{}", delays={"alpha": 0.05})
        responses = await dispatch(list(free_tier.agents), "prompt", provider, quiet=True)
        assert [r.agent_id for r in responses] == ["alpha", "beta", "gamma"]
        assert all(r.ok for r in responses)

    @pytest.mark.asyncio
    async def test_timeout_is_isolated(self, free_tier):
        provider = FakeProvider(default="reply", delays={"alpha": 1})
        responses = await dispatch(
            list(free_tier.agents), "prompt", provider, deadline_seconds=0.05, quiet=True
        )
        alpha, beta, gamma = responses
        assert alpha.error_kind == "timeout"
        assert not alpha.ok
        assert beta.ok and gamma.ok

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_isolated(self, free_tier):
        provider = FakeProvider({"beta": RuntimeError("boom")}, default="reply")
        responses = await dispatch(list(free_tier.agents), "prompt", provider, quiet=True)
        assert responses[1].error_kind == "transport"
        assert "RuntimeError" in responses[1].error
        assert responses[0].ok and responses[2].ok

    @pytest.mark.asyncio
    async def test_provider_failure_keeps_kind(self, free_tier):
        provider = FakeProvider({"gamma": None}, default="reply")
        responses = await dispatch(list(free_tier.agents), "prompt", provider, quiet=True)
        assert responses[2].error_kind == "http"

    @pytest.mark.asyncio
    async def test_blank_reply_is_empty(self, free_tier):
        provider = FakeProvider(default="   ")
        responses = await dispatch(list(free_tier.agents), "prompt", provider, quiet=True)
        assert {r.error_kind for r in responses} == {"empty"}

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, free_tier):
        provider = CountingProvider(default="reply")
        await dispatch(list(free_tier.agents), "prompt", provider, max_concurrency=1, quiet=True)
        assert provider.peak == 1
        assert provider.calls == ["alpha", "beta", "gamma"]

    @pytest.mark.asyncio
    async def test_runs_concurrently(self, free_tier):
        provider = CountingProvider(default="reply")
        await dispatch(list(free_tier.agents), "prompt", provider, quiet=True)
        assert provider.peak == 3

    @pytest.mark.asyncio
    async def test_no_agents(self):
        assert await dispatch([], "prompt", FakeProvider(), quiet=True) == []

    @pytest.mark.asyncio
    async def test_system_prompt_per_specialty(self, free_tier):
        seen = {}

        class Recorder(FakeProvider):
            async def complete_with_retry(self, model, system_prompt, user_prompt, max_tokens=0):
                seen[model] = system_prompt
                return await super().complete_with_retry(model, system_prompt, user_prompt, max_tokens)

        await dispatch(list(free_tier.agents), "prompt", Recorder(default="x"), quiet=True)
        assert "specializing in security" in seen["alpha"]
        assert "specializing in defi" in seen["beta"]


class TestCallAgent:
    @pytest.mark.asyncio
    async def test_returns_text(self, free_tier):
        text = await call_agent(free_tier.agents[0], "sys", "prompt", FakeProvider(default="hi"), 1)
        assert text == "hi"

    @pytest.mark.asyncio
    async def test_failure_raises_transport_error(self, free_tier):
        with pytest.raises(TransportError) as exc_info:
            await call_agent(free_tier.agents[0], "sys", "prompt", FakeProvider(), 1)
        assert exc_info.value.agent_id == "alpha"
        assert exc_info.value.kind == "http"
