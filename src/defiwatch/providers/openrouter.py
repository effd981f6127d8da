"""OpenRouter chat-completions provider."""

from __future__ import annotations

import os
from typing import Optional

import httpx

from ..models.provider import CompletionResult
from .base import BaseProvider


class OpenRouterProvider(BaseProvider):
    name = "openrouter"
    API_URL = "https://openrouter.ai/api/v1/chat/completions"

    def _get_api_key(self) -> Optional[str]:
        env_var = self.config.get("api_key_env", "OPENROUTER_API_KEY")
        return os.environ.get(env_var)

    async def complete(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
    ) -> CompletionResult:
        api_key = self._get_api_key()
        if not api_key:
            env_var = self.config.get("api_key_env", "OPENROUTER_API_KEY")
            return CompletionResult(
                success=False,
                error=f"API key not found in environment variable: {env_var}",
                error_kind="config",
            )

        url = self.config.get("endpoint", self.API_URL)
        max_tok = max_tokens or self.config.get("max_tokens", 4000)
        temperature = self.common.get("temperature", 0.1)
        timeout = self.common.get("timeout_seconds", 300)

        body = {
            "model": model,
            "max_tokens": max_tok,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.config.get("referer", "http://localhost:3000"),
            "X-Title": self.config.get("title", "DeFi Watch Security Audit"),
        }

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json=body, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            error_body = ""
            try:
                error_body = e.response.text[:500]
            except Exception:
                pass
            return CompletionResult(
                success=False,
                error=f"{e.response.status_code} | {error_body}",
                error_kind="http",
                status_code=e.response.status_code,
            )
        except httpx.TimeoutException as e:
            return CompletionResult(success=False, error=f"timeout: {e}", error_kind="timeout")
        except httpx.HTTPError as e:
            return CompletionResult(success=False, error=str(e), error_kind="transport")
        except ValueError as e:
            return CompletionResult(
                success=False, error=f"Response is not JSON: {e}", error_kind="malformed"
            )

        # OpenRouter reports upstream model errors inside a 200 envelope
        if isinstance(data, dict) and data.get("error"):
            err = data["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            code = err.get("code") if isinstance(err, dict) else None
            return CompletionResult(
                success=False,
                error=f"{code or 'error'} | {message}",
                error_kind="http",
                status_code=code if isinstance(code, int) else None,
            )

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return CompletionResult(
                success=False,
                error="Response envelope has no choices[0].message.content",
                error_kind="malformed",
            )

        if not content or not str(content).strip():
            return CompletionResult(
                success=False, error=f"Empty response from {model}", error_kind="empty"
            )

        usage = data.get("usage") or {}
        tokens = {
            "input": usage.get("prompt_tokens", 0),
            "output": usage.get("completion_tokens", 0),
        }
        return CompletionResult(success=True, content=content, tokens_used=tokens)
