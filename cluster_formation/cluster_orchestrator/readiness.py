"""
Readiness Barrier - waits until every node is healthy, any node failed, or time runs out
"""
import time
import logging
from typing import List, Optional

import requests
import valkey

from ..errors import ConfigurationError
from ..interfaces import IReadinessProbe
from ..models import BarrierResult, NodeInfo

logger = logging.getLogger(__name__)


def effective_timeout(probe_timeout: float, limit: Optional[float]) -> float:
    """The probe's own timeout, shortened to limit when one is given"""
    if limit is None:
        return probe_timeout
    return min(probe_timeout, limit)


class HttpProbe(IReadinessProbe):
    """GET http://localhost:<http_port>; any response at all counts as healthy"""

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout

    def is_ready(self, node: NodeInfo, timeout: Optional[float] = None) -> bool:
        try:
            requests.get(f"http://localhost:{node.http_port}", timeout=effective_timeout(self.timeout, timeout))
            return True
        except requests.RequestException:
            return False


class ValkeyProbe(IReadinessProbe):
    """PING over the Valkey protocol on the node's http port"""

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout

    def is_ready(self, node: NodeInfo, timeout: Optional[float] = None) -> bool:
        timeout = effective_timeout(self.timeout, timeout)
        client = valkey.Valkey(
            host='localhost',
            port=node.http_port,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True
        )
        try:
            return bool(client.ping())
        except valkey.ResponseError:
            # an error reply still means the server is up and serving
            return True
        except (valkey.ConnectionError, valkey.TimeoutError):
            return False
        finally:
            client.close()


PROBES = {
    'http': HttpProbe,
    'valkey': ValkeyProbe,
}


def create_probe(kind: str) -> IReadinessProbe:
    if kind not in PROBES:
        raise ConfigurationError(f"Unknown readiness probe: {kind}")
    return PROBES[kind]()


class ReadinessBarrier:
    """Polls all nodes of a cluster at a fixed interval up to a hard deadline"""

    def __init__(self, probe: IReadinessProbe, timeout: float = 30.0, interval: float = 0.5):
        self.probe = probe
        self.timeout = timeout
        self.interval = interval

    def any_failed(self, nodes: List[NodeInfo]) -> bool:
        return any(node.failed() for node in nodes)

    def all_ready(self, nodes: List[NodeInfo]) -> bool:
        """Probe nodes in order; a single probe never outlasts one poll interval"""
        for node in nodes:
            if not node.pid_file.exists():
                return False
            if not self.probe.is_ready(node, timeout=self.interval):
                return False
        return True

    def wait(self, nodes: List[NodeInfo]) -> BarrierResult:
        logger.info(f"Waiting for {len(nodes)} node(s) to be ready (timeout: {self.timeout:.2f}s)")
        deadline = time.monotonic() + self.timeout

        while True:
            if self.any_failed(nodes):
                failed = [node.node_id for node in nodes if node.failed()]
                logger.error(f"Node(s) failed to start: {', '.join(failed)}")
                return BarrierResult.FAILED

            if self.all_ready(nodes):
                logger.info(f"All {len(nodes)} nodes are active")
                return BarrierResult.READY

            # a node may have failed while the others were being probed
            if self.any_failed(nodes):
                continue

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.error(f"Cluster failed to become ready within {self.timeout:.2f}s")
                return BarrierResult.TIMED_OUT
            time.sleep(min(self.interval, remaining))
