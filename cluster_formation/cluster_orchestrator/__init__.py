"""
Cluster Orchestrator - per-node setup pipelines, process supervision and the readiness barrier
"""
from .orchestrator import ClusterOrchestrator, ConfigurationManager, PortManager
from .pipeline import SetupPipeline, StagedExtension
from .supervisor import ProcessSupervisor, stop_node
from .stale_guard import StaleInstanceGuard
from .readiness import ReadinessBarrier, HttpProbe, ValkeyProbe
from .diagnostics import DiagnosticsReporter

__all__ = [
    'ClusterOrchestrator',
    'ConfigurationManager',
    'PortManager',
    'SetupPipeline',
    'StagedExtension',
    'ProcessSupervisor',
    'stop_node',
    'StaleInstanceGuard',
    'ReadinessBarrier',
    'HttpProbe',
    'ValkeyProbe',
    'DiagnosticsReporter',
]
