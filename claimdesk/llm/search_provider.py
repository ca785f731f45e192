"""
Web research provider for the strategic pipeline.

Sends one research question at a time to a search-grounded chat model
(Perplexity ``sonar`` by default) and returns the answer text.
"""

from typing import Any, Dict, Optional

import aiohttp

from .base import BaseLLMProvider
from ..error_handler import ConfigurationError, RetryableError
from ..logging_conf import get_logger
from ..retry_utils import retry_manager

logger = get_logger(__name__)

RESEARCH_SYSTEM_PROMPT = (
    "You are a research assistant for insurance claims. Provide factual, "
    "citation-backed information. Focus on regulations, manufacturer "
    "specifications, and weather data."
)


class SearchProvider:
    """Citation-backed research over an OpenAI-compatible search model."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 1500
    ):
        from ..settings import settings

        config = settings.global_config
        self.api_key = api_key if api_key is not None else settings.get_secret("search_api_key", "perplexity")
        self.model_name = model or config.search_model
        self.base_url = (base_url or config.search_base_url).rstrip("/")
        self.max_tokens = max_tokens

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: str) -> str:
        """
        Research a single query.

        Raises:
            ConfigurationError: no search API key is configured
        """
        if not self.api_key:
            raise ConfigurationError("search", "Search API key not configured")

        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": RESEARCH_SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            "max_tokens": self.max_tokens,
        }
        data = await retry_manager.execute_with_retry(
            self._post, "search", "perplexity", {"query": query[:80]}, payload
        )
        return BaseLLMProvider._extract_content(data)

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=60)
            ) as response:
                if response.status == 429 or response.status >= 500:
                    raise RetryableError(f"Search returned HTTP {response.status}")
                if response.status != 200:
                    error_text = await response.text()
                    logger.error("Search request failed", status=response.status, error=error_text[:500])
                    raise RuntimeError(f"Search failed: HTTP {response.status}")
                return await response.json()
