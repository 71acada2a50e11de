"""
planexec - Plan Execution Control Plane
Dependency-aware execution of multi-step tool plans
"""

__version__ = "0.1.0"
