"""
Main entry point for Cluster Formation
"""
from typing import Callable, List, Optional
from .models import ClusterConfig, NodeInfo
from .cluster_orchestrator import ClusterOrchestrator


class ClusterFormation:
    """Front door used by the CLI and by test harnesses"""

    def __init__(self, verbose: Optional[bool] = None):
        """
        Initialize with a cluster orchestrator
        """
        self.orchestrator = ClusterOrchestrator(verbose=verbose)

    def start(self, config: ClusterConfig) -> List[NodeInfo]:
        """
        Set up and start a cluster, returning once it is ready.
        """
        return self.orchestrator.start_cluster(config)

    def wait(self) -> None:
        """
        Block until foreground nodes exit.
        """
        self.orchestrator.wait()

    def stop(self, config: ClusterConfig) -> None:
        """
        Stop the nodes of a cluster using the pid files they recorded.
        """
        self.orchestrator.stop_cluster(self.orchestrator.plan_nodes(config))

    def run(self, config: ClusterConfig, workload: Callable[[List[NodeInfo]], Optional[int]]) -> Optional[int]:
        """
        Start a cluster, run the workload against it, and stop it afterwards.
        """
        return self.orchestrator.run(config, workload)

    def plan(self, config: ClusterConfig) -> List[NodeInfo]:
        return self.orchestrator.plan_nodes(config)
