"""
Base protocols and interfaces for LLM providers.

Defines the contract that text generation and web research providers
implement, so the follow-up and pipeline code can be exercised with fakes.
"""

from typing import Protocol, List, Dict, Any
from abc import ABC, abstractmethod


class LLMProvider(Protocol):
    """Protocol for LLM generation providers."""

    async def generate(
        self,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 1500,
        temperature: float = 0.3
    ) -> str:
        """
        Generate text completion from messages.

        Args:
            system: System prompt
            messages: List of message dicts with 'role' and 'content'
            max_tokens: Maximum tokens to generate
            temperature: Generation temperature

        Returns:
            Generated text response
        """
        ...

    async def test_connection(self) -> bool:
        """Test if the provider is available and working."""
        ...


class ResearchProvider(Protocol):
    """Protocol for citation-backed web research."""

    @property
    def is_configured(self) -> bool:
        ...

    async def search(self, query: str) -> str:
        """Answer a research query; returns the answer text."""
        ...


class BaseLLMProvider(ABC):
    """Abstract base class for LLM providers with common functionality."""

    def __init__(self, model_name: str):
        self.model_name = model_name

    @abstractmethod
    async def generate(
        self,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 1500,
        temperature: float = 0.3
    ) -> str:
        """Generate text completion."""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Test provider connection."""
        pass

    def _format_messages(self, system: str, messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
        """Format messages with system prompt for the provider."""
        formatted = [{"role": "system", "content": system}]
        formatted.extend(messages)
        return formatted

    @staticmethod
    def _extract_content(data: Dict[str, Any]) -> str:
        """Pull the first choice's message text out of a chat completion."""
        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""
