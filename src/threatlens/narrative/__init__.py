"""Narrative generation: prompts, provider chain and deterministic fallback."""

from threatlens.narrative.document import NarrativeDocument, is_rule_based
from threatlens.narrative.generator import Narrative, NarrativeGenerator
from threatlens.narrative.providers import CompletionProvider, NarrativeProviderError

__all__ = [
    "CompletionProvider",
    "Narrative",
    "NarrativeDocument",
    "NarrativeGenerator",
    "NarrativeProviderError",
    "is_rule_based",
]
