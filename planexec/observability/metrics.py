"""
Prometheus metrics definitions for planexec
"""

from prometheus_client import Counter, Gauge, Histogram, Info


class PlanexecMetrics:
    """planexec Prometheus metrics collection"""

    def __init__(self):
        # Execution metrics
        self.executions_total = Counter(
            'planexec_executions_total',
            'Total number of executions by final status',
            ['status', 'strategy']
        )

        self.execution_duration_seconds = Histogram(
            'planexec_execution_duration_seconds',
            'Wall time of whole executions',
            ['strategy'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 300.0]
        )

        self.running_executions = Gauge(
            'planexec_running_executions',
            'Number of executions currently running'
        )

        # Step metrics
        self.step_executions_total = Counter(
            'planexec_step_executions_total',
            'Total number of step executions',
            ['tool', 'status']
        )

        self.step_duration_seconds = Histogram(
            'planexec_step_duration_seconds',
            'Time spent executing steps, retries included',
            ['tool'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0]
        )

        self.step_retries_total = Counter(
            'planexec_step_retries_total',
            'Total number of step retries',
            ['tool']
        )

        # Rollback metrics
        self.rollbacks_total = Counter(
            'planexec_rollbacks_total',
            'Total number of rollback runs',
            ['outcome']
        )

        # Planning metrics
        self.strategy_selections_total = Counter(
            'planexec_strategy_selections_total',
            'Execution strategies selected by complexity analysis',
            ['strategy']
        )

        self.system_info = Info(
            'planexec_system_info',
            'planexec system information'
        )

        self._initialize_system_info()

    def _initialize_system_info(self):
        """Initialize system information metric"""
        import platform
        import sys

        self.system_info.info({
            'version': '0.1.0',
            'python_version': sys.version.split()[0],
            'platform': platform.platform()
        })

    def record_execution(self, status: str, strategy: str, duration: float = None):
        """Record a finished execution"""
        self.executions_total.labels(status=status, strategy=strategy).inc()
        if duration is not None:
            self.execution_duration_seconds.labels(strategy=strategy).observe(duration)

    def record_step(self, tool: str, status: str, duration: float = None):
        """Record a step reaching a terminal state"""
        self.step_executions_total.labels(tool=tool, status=status).inc()
        if duration is not None:
            self.step_duration_seconds.labels(tool=tool).observe(duration)

    def record_retry(self, tool: str):
        self.step_retries_total.labels(tool=tool).inc()

    def record_rollback(self, success: bool):
        self.rollbacks_total.labels(outcome="success" if success else "failure").inc()

    def record_strategy(self, strategy: str):
        self.strategy_selections_total.labels(strategy=strategy).inc()

    def execution_started(self):
        self.running_executions.inc()

    def execution_finished(self):
        self.running_executions.dec()


# Global metrics instance
metrics = PlanexecMetrics()
