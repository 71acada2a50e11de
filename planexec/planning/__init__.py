"""
Planning-side analysis for planexec
"""

from .complexity import ComplexityAnalyzer

__all__ = ["ComplexityAnalyzer"]
