"""LLM scoring: prompt, client and output parsing."""

from .client import LLMClient
from .parsing import AnalysisResult, enforce_non_multiple_of_five, end_with_period, parse_analysis

__all__ = [
    "LLMClient",
    "AnalysisResult",
    "enforce_non_multiple_of_five",
    "end_with_period",
    "parse_analysis",
]
