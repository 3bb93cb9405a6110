"""Conversational form engine: topic coverage, extraction merging and turn orchestration."""

__version__ = "0.1.0"
