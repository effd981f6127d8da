"""AI provider abstraction with retry logic."""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol, runtime_checkable

from ..errors import ConfigError
from ..models.provider import CompletionResult
from ..utils.sanitize import sanitize_error

NON_RETRYABLE_STATUS = (400, 401, 403, 404)
RETRYABLE_STATUS = (500, 502, 503, 504)


@runtime_checkable
class AIProvider(Protocol):
    """Protocol that all AI providers must implement."""

    name: str

    async def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
    ) -> CompletionResult: ...

    async def complete_with_retry(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
    ) -> CompletionResult: ...


class BaseProvider:
    """Base class with shared retry logic and config handling."""

    name: str = "base"

    def __init__(self, provider_config: dict, common_config: dict):
        self.config = provider_config
        self.common = common_config
        self.max_attempts = common_config.get("retry_attempts", 2)
        self.retry_delay = common_config.get("retry_delay_seconds", 2)

    async def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
    ) -> CompletionResult:
        raise NotImplementedError

    @staticmethod
    def _is_rate_limit(result: CompletionResult) -> bool:
        return result.status_code == 429 or "429" in (result.error or "")

    @staticmethod
    def _is_retryable(result: CompletionResult) -> bool:
        if result.error_kind in ("config", "malformed"):
            return False
        if result.status_code in NON_RETRYABLE_STATUS:
            return False
        if result.status_code == 429 or result.status_code in RETRYABLE_STATUS:
            return True
        if result.error_kind in ("timeout", "transport", "empty"):
            return True
        error_msg = (result.error or "").lower()
        return any(code in error_msg for code in ("timeout", "timed out"))

    async def complete_with_retry(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
    ) -> CompletionResult:
        """Wrap complete() with retry logic including rate-limit handling."""
        rate_limit_max = max(self.max_attempts, 3)
        last_result: Optional[CompletionResult] = None

        for attempt in range(1, rate_limit_max + 1):
            result = await self.complete(model, system_prompt, user_prompt, max_tokens)
            last_result = result

            if result.success:
                return result

            is_rate_limit = self._is_rate_limit(result)
            effective_max = rate_limit_max if is_rate_limit else self.max_attempts
            if not self._is_retryable(result) or attempt >= effective_max:
                result.error = sanitize_error(result.error or "")
                return result

            # Rate limits: 10s base. Others: standard backoff.
            base_delay = 10 if is_rate_limit else self.retry_delay
            await asyncio.sleep(base_delay * min(attempt, 3))

        return last_result or CompletionResult(
            success=False, error="Max retries exceeded", error_kind="transport"
        )


def get_ai_provider(
    config: dict,
    provider_override: Optional[str] = None,
    endpoint_override: Optional[str] = None,
) -> BaseProvider:
    """Factory function to create the configured AI provider."""
    ai_config = config.get("ai", {})
    provider_name = provider_override or ai_config.get("provider", "openrouter")

    provider_config = dict(ai_config.get(provider_name, {}))
    if endpoint_override:
        provider_config["endpoint"] = endpoint_override

    # Common config is the ai section minus provider sub-configs
    common_config = {
        k: v for k, v in ai_config.items() if k not in ("openrouter", "ollama", "dry-run")
    }

    if provider_name == "openrouter":
        from .openrouter import OpenRouterProvider
        return OpenRouterProvider(provider_config, common_config)
    elif provider_name == "ollama":
        from .ollama import OllamaProvider
        return OllamaProvider(provider_config, common_config)
    elif provider_name == "dry-run":
        from .dryrun import DryRunProvider
        return DryRunProvider(provider_config, common_config)
    else:
        raise ConfigError(f"Unknown AI provider: {provider_name}")
