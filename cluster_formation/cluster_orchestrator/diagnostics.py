"""
Diagnostics Reporter - dumps everything known about every node when a cluster fails to start
"""
import logging
from collections import deque
from typing import List

from ..errors import ClusterStartError
from ..models import BarrierResult, NodeInfo

logger = logging.getLogger(__name__)


class DiagnosticsReporter:
    """Aggregates per-node command, output and log tail into one failure"""

    def __init__(self, log_tail_lines: int = 100):
        self.log_tail_lines = log_tail_lines

    def tail(self, node: NodeInfo) -> List[str]:
        """Last lines of the node's startup log, empty if it was never written"""
        if not node.start_log.exists():
            return []
        with open(node.start_log, 'r', encoding='utf-8', errors='replace') as f:
            return [line.rstrip('\n') for line in deque(f, maxlen=self.log_tail_lines)]

    def node_section(self, node: NodeInfo) -> List[str]:
        lines = node.command_string().splitlines()

        if node.error is not None:
            lines.append(f"Node {node.node_num} setup failed: {node.error}")
        if node.failed_marker.exists():
            lines.append(f"Node {node.node_num} failure marker present: {node.failed_marker}")

        lines.append(f"Node {node.node_num} output:")
        lines.extend(node.buffered_output().splitlines())

        log_tail = self.tail(node)
        if log_tail:
            lines.append(f"Node {node.node_num} log (last {len(log_tail)} lines):")
            lines.extend(log_tail)
        return lines

    def build_report(self, nodes: List[NodeInfo]) -> str:
        report = []
        for node in nodes:
            report.extend(self.node_section(node))
        return '\n'.join(report)

    def report(self, nodes: List[NodeInfo], result: BarrierResult) -> None:
        """Log diagnostics for every node, then raise one ClusterStartError"""
        report = self.build_report(nodes)
        for line in report.splitlines():
            logger.error(line)

        failed_nodes = [node.node_num for node in nodes if node.failed()]
        if result == BarrierResult.TIMED_OUT:
            message = "Failed to start cluster: timed out waiting for nodes to become ready"
        else:
            message = f"Failed to start cluster: node(s) {', '.join(str(n) for n in failed_nodes)} failed"
        raise ClusterStartError(message, report=report, failed_nodes=failed_nodes)
