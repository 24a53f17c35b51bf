"""
OpenAI-compatible chat completion client used to score issues.

The default endpoint is iFlow, which reports throttling either as HTTP 429
or as HTTP 200 with ``{"status": "449"}`` in the body.
"""

import time
from typing import Any, Dict, Optional

import httpx

from issue_watcher.config import get_settings
from issue_watcher.exceptions import (
    LLMAPIError,
    LLMRateLimitError,
    LLMTimeoutError,
    MalformedAnalysisError,
)
from issue_watcher.logging import llm_logger as logger

from .parsing import AnalysisResult, parse_analysis
from .prompts import build_messages

PROVIDER_RATE_LIMIT_STATUS = "449"


class LLMClient:
    """
    Async scoring client.

    Usage:
        async with LLMClient() as client:
            result = await client.analyze_issue("auth", issue)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tokens: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.llm_api_key
        self.base_url = (base_url or settings.llm_api_url).rstrip("/")
        self.model = model or settings.llm_model
        self.timeout = timeout or settings.llm_timeout_seconds
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.temperature = settings.llm_temperature

        if not self.api_key:
            raise ValueError("LLM_API_KEY is not configured")

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "LLMClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _build_request(self, keyword: str, issue: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": build_messages(keyword, issue),
            "temperature": self.temperature,
            "top_p": 0.9,
            "max_tokens": self.max_tokens,
            "stream": False,
        }

    async def analyze_issue(self, keyword: str, issue: Dict[str, Any]) -> AnalysisResult:
        """
        Score one issue against ``keyword``.

        Raises:
            LLMTimeoutError: the request exceeded the client timeout
            LLMRateLimitError: the provider throttled the request
            LLMAPIError: transport failure or any other non-success status
            MalformedAnalysisError: the reply could not be parsed
        """
        number = int(issue.get("number") or 0)
        start_time = time.perf_counter()

        try:
            response = await self._client.post(
                "/chat/completions", json=self._build_request(keyword, issue)
            )
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"LLM request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMAPIError(f"LLM request failed: {e}") from e

        if response.status_code == 429:
            raise LLMRateLimitError("LLM provider rate limit exceeded")
        if response.status_code >= 400:
            raise LLMAPIError(
                f"LLM provider returned {response.status_code}", status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedAnalysisError("LLM response is not JSON") from e

        if str(data.get("status", "")) == PROVIDER_RATE_LIMIT_STATUS:
            raise LLMRateLimitError("LLM provider rate limit exceeded")

        choices = data.get("choices") or [{}]
        message = choices[0].get("message") or {}
        content = message.get("content") or message.get("reasoning_content") or ""

        result = parse_analysis(content, salt=number)
        logger.debug(
            "issue_analyzed",
            issue_number=number,
            score=result.relevance_score,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
            usage=data.get("usage", {}),
        )
        return result

    async def close(self) -> None:
        await self._client.aclose()
