"""
Base interfaces and abstract classes for all major components
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional
from .models import ClusterConfig, NodeInfo


class IDistributionArchive(ABC):
    """Interface for an opened server distribution archive"""

    @abstractmethod
    def extract_into(self, destination: Path) -> None:
        """Materialize the archive contents under destination"""
        pass


class IProcessLookup(ABC):
    """Interface for the process-identity listing"""

    @abstractmethod
    def list_processes(self) -> Dict[int, str]:
        """Return a mapping of live process id to command identifier"""
        pass


class IReadinessProbe(ABC):
    """Interface for node health probes"""

    @abstractmethod
    def is_ready(self, node: NodeInfo, timeout: Optional[float] = None) -> bool:
        """Return True if the node answers on its service port within timeout seconds"""
        pass


class IClusterOrchestrator(ABC):
    """Interface for cluster lifecycle management"""

    @abstractmethod
    def plan_nodes(self, config: ClusterConfig) -> List[NodeInfo]:
        """Derive one NodeInfo per node index"""
        pass

    @abstractmethod
    def start_cluster(self, config: ClusterConfig, nodes: Optional[List[NodeInfo]] = None) -> List[NodeInfo]:
        """Set up and start every node, then wait for the cluster to be ready"""
        pass

    @abstractmethod
    def stop_cluster(self, nodes: List[NodeInfo]) -> None:
        """Stop every node of a cluster"""
        pass

    @abstractmethod
    def run(self, config: ClusterConfig, workload: Callable[[List[NodeInfo]], Optional[int]]) -> Optional[int]:
        """Start a cluster, run the workload and always stop the cluster afterwards"""
        pass
