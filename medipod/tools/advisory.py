"""
AI health-advice collaborator.

Talks to an OpenAI-compatible chat completions endpoint. Every outcome
is an explicit AdviceResult: callers check ``available`` and fall back to
the menu when no advice could be produced.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from medipod.config import AdvisoryConfig, settings
from medipod.prompts.system_prompts import build_advisory_messages

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdviceResult:
    available: bool
    text: str = ""
    reason: str = ""

    @classmethod
    def unavailable(cls, reason: str) -> "AdviceResult":
        return cls(available=False, reason=reason)


class AdvisoryGateway:
    """Null gateway: never has advice. Subclasses call a real model."""

    async def advise(self, text: str, profile_summary: str = "") -> AdviceResult:
        return AdviceResult.unavailable("disabled")


class HttpAdvisoryGateway(AdvisoryGateway):
    def __init__(
        self,
        config: AdvisoryConfig = settings.advisory,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config
        self._client = client

    async def _post(self, payload: dict) -> httpx.Response:
        url = f"{self._config.base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {self._config.api_key}"}
        if self._client is not None:
            return await self._client.post(url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self._config.timeout_sec) as client:
            return await client.post(url, json=payload, headers=headers)

    async def advise(self, text: str, profile_summary: str = "") -> AdviceResult:
        if not self._config.api_key:
            return AdviceResult.unavailable("not_configured")

        payload = {
            "model": self._config.model,
            "messages": build_advisory_messages(text, profile_summary),
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
        }
        try:
            response = await asyncio.wait_for(self._post(payload), timeout=self._config.timeout_sec)
            response.raise_for_status()
            data = response.json()
        except asyncio.TimeoutError:
            logger.warning("Advisory request timed out after %.1fs", self._config.timeout_sec)
            return AdviceResult.unavailable("timeout")
        except httpx.HTTPError as exc:
            logger.warning("Advisory request failed: %s", exc)
            return AdviceResult.unavailable("http_error")
        except ValueError:
            logger.warning("Advisory response was not JSON")
            return AdviceResult.unavailable("bad_response")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.warning("Advisory response missing choices")
            return AdviceResult.unavailable("bad_response")
        content = (content or "").strip()
        if not content:
            return AdviceResult.unavailable("empty")
        return AdviceResult(available=True, text=content)
