"""Spreadsheet header -> import entity field mapping."""

from .aliases import AliasDictionary, FieldAliases, load_alias_dictionary
from .history import MappingHistory
from .llm_resolver import AIFallbackResolver, AIMapping, AnthropicCompletionClient, CompletionClient
from .matcher import (
    FieldMapper,
    FieldMapping,
    MappingResult,
    Suggestion,
    TargetCandidate,
    build_mapper,
)
from .normalizer import normalize
from .scorer import score

__all__ = [
    "AIFallbackResolver",
    "AIMapping",
    "AliasDictionary",
    "AnthropicCompletionClient",
    "CompletionClient",
    "FieldAliases",
    "FieldMapper",
    "FieldMapping",
    "MappingHistory",
    "MappingResult",
    "Suggestion",
    "TargetCandidate",
    "build_mapper",
    "load_alias_dictionary",
    "normalize",
    "score",
]
