"""Visual and semantic similarity matchers."""

from .semantic import SemanticContextAnalyzer, SemanticMatch
from .visual import VisualMatch, VisualSimilarityMatcher

__all__ = ["SemanticContextAnalyzer", "SemanticMatch", "VisualMatch", "VisualSimilarityMatcher"]
