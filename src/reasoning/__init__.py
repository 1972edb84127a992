"""Reasoning provider access (Anthropic Messages API)."""
