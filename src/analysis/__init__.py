"""Conversation analysis: provider path, deterministic fallback, result normalization."""

from src.analysis.analyzer import ConversationAnalyzer, SOURCE_FALLBACK, SOURCE_PROVIDER
from src.analysis.fallback import FallbackAnalyzer
