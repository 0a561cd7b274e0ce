"""
Article analysis.

This package holds the provider cascade, the heuristic fallback and the
sanitizer that every analysis passes through.
"""

from .sanitize import clamp_importance, detect_language, sanitize_analysis, sanitize_tags
from .heuristic import HeuristicAnalyzer
from .content_analyzer import ContentAnalyzer

__all__ = [
    "ContentAnalyzer",
    "HeuristicAnalyzer",
    "clamp_importance",
    "detect_language",
    "sanitize_analysis",
    "sanitize_tags",
]
