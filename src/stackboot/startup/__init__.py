"""Stack bring-up: planning, readiness, bootstrap and monitoring.

Public entry points are re-exported here.
"""

from stackboot.startup.bootstrap import BootstrapReconciler, BootstrapReport
from stackboot.startup.config_schema import StackConfig
from stackboot.startup.error_catalog import StartupErrorCatalog, error_catalog
from stackboot.startup.health_checks import HealthState, ProbeResult
from stackboot.startup.monitor import StackMonitor, StackStatus
from stackboot.startup.orchestrator import BringUpReport, StackOrchestrator
from stackboot.startup.planner import StartupPlan, plan_waves
from stackboot.startup.service_registry import ServiceNode, ServiceRegistry
from stackboot.startup.wait_policy import WaitOutcome, WaitPolicy

__all__ = [
    "BootstrapReconciler",
    "BootstrapReport",
    "BringUpReport",
    "HealthState",
    "ProbeResult",
    "ServiceNode",
    "ServiceRegistry",
    "StackConfig",
    "StackMonitor",
    "StackOrchestrator",
    "StackStatus",
    "StartupErrorCatalog",
    "StartupPlan",
    "WaitOutcome",
    "WaitPolicy",
    "error_catalog",
    "plan_waves",
]
