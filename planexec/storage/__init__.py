"""
Storage module for planexec
"""

from .schema import init_database, get_connection
from .database import PlanStorage, ExecutionStorage

__all__ = ["init_database", "get_connection", "PlanStorage", "ExecutionStorage"]
