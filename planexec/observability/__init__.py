"""
Prometheus metrics for planexec
"""

from .metrics import metrics, PlanexecMetrics

__all__ = ["metrics", "PlanexecMetrics"]
