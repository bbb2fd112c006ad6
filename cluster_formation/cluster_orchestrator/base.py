"""
Base classes for Cluster Orchestrator components
"""
import logging
from abc import ABC
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from ..errors import TeardownError
from ..interfaces import IClusterOrchestrator
from ..models import ClusterConfig, NodeInfo

logger = logging.getLogger(__name__)


class BaseClusterOrchestrator(IClusterOrchestrator, ABC):
    """Base implementation wiring the stop finalizer around a consuming workload"""

    def run(self, config: ClusterConfig, workload: Callable[[List[NodeInfo]], Optional[int]]) -> Optional[int]:
        """Start the cluster, run workload(nodes), and stop daemonized nodes whatever happens"""
        with self.cluster(config) as nodes:
            return workload(nodes)

    @contextmanager
    def cluster(self, config: ClusterConfig) -> Iterator[List[NodeInfo]]:
        nodes = self.plan_nodes(config)
        try:
            self.start_cluster(config, nodes)
            yield nodes
        except BaseException:
            # the start or workload error propagates; teardown failures are only logged
            if config.daemonize:
                try:
                    self.stop_cluster(nodes)
                except TeardownError as e:
                    logger.error(f"Teardown after failure did not complete: {e}")
            raise
        else:
            if config.daemonize:
                self.stop_cluster(nodes)
