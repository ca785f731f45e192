"""
OpenAI-compatible chat completion provider.

Talks to an AI gateway exposing ``/chat/completions`` with bearer auth.
Used for follow-up email drafting and strategic thesis generation.
"""

from typing import List, Dict, Any, Optional

import aiohttp

from .base import BaseLLMProvider
from ..error_handler import ConfigurationError, RetryableError
from ..logging_conf import get_logger
from ..retry_utils import retry_manager

logger = get_logger(__name__)


class GatewayProvider(BaseLLMProvider):
    """Chat completions over an OpenAI-compatible HTTP API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None
    ):
        from ..settings import settings

        config = settings.global_config
        super().__init__(model or config.llm_model)
        self.api_key = api_key if api_key is not None else settings.get_secret("llm_api_key", "llm_gateway")
        self.base_url = (base_url or config.llm_base_url).rstrip("/")
        self.chat_url = f"{self.base_url}/chat/completions"

    async def generate(
        self,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 1500,
        temperature: float = 0.3
    ) -> str:
        """
        Generate text with the configured gateway model.

        Raises:
            ConfigurationError: no API key is configured
            RuntimeError: the gateway rejected the request or answered empty
        """
        if not self.api_key:
            raise ConfigurationError("llm", "LLM API key not configured")
        if not messages:
            raise ValueError("No messages provided for generation")

        payload = {
            "model": self.model_name,
            "messages": self._format_messages(system, messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        data = await retry_manager.execute_with_retry(
            self._post, "llm", "llm_gateway", {"model": self.model_name}, payload
        )

        content = self._extract_content(data)
        if not content.strip():
            logger.error("LLM generated empty response", model=self.model_name)
            raise RuntimeError("LLM generated empty response")

        logger.debug("Generation completed", model=self.model_name, response_length=len(content))
        return content.strip()

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.chat_url,
                json=payload,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=120)
            ) as response:
                if response.status == 429 or response.status >= 500:
                    raise RetryableError(f"LLM gateway returned HTTP {response.status}")
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(
                        "LLM generation request failed",
                        status=response.status,
                        error=error_text[:500],
                        model=self.model_name
                    )
                    raise RuntimeError(f"LLM generation failed: HTTP {response.status} - {error_text[:200]}")
                return await response.json()

    async def test_connection(self) -> bool:
        """Run a tiny completion to check credentials and reachability."""
        try:
            reply = await self.generate(
                "You are a helpful assistant.",
                [{"role": "user", "content": "Reply with 'OK' if you are working."}],
                max_tokens=10,
                temperature=0.0
            )
            return bool(reply)
        except Exception as e:
            logger.warning("LLM gateway connection test failed", error=str(e), model=self.model_name)
            return False
