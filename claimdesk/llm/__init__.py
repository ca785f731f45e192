"""LLM and web research providers."""

from .base import BaseLLMProvider, LLMProvider, ResearchProvider
from .gateway_provider import GatewayProvider
from .search_provider import SearchProvider

__all__ = ["BaseLLMProvider", "LLMProvider", "ResearchProvider", "GatewayProvider", "SearchProvider"]
