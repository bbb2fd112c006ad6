"""
Stale-Instance Guard - Verifies leftover pid files before a node is started
"""
import logging
from typing import Optional

from ..errors import StaleProcessError
from ..interfaces import IProcessLookup
from ..models import NodeInfo

logger = logging.getLogger(__name__)


class StaleInstanceGuard:
    """Checks that a node's pid file does not belong to a still running server"""

    def __init__(self, process_lookup: IProcessLookup, process_identity: Optional[str] = None):
        self.process_lookup = process_lookup
        self.process_identity = process_identity

    def identity_for(self, node: NodeInfo) -> str:
        """Marker a live server of this node carries on its command line, its home directory by default"""
        return self.process_identity or str(node.home_dir)

    def read_pid(self, node: NodeInfo) -> Optional[int]:
        """Read the pid recorded for a node, None if the file is missing or garbage"""
        try:
            text = node.pid_file.read_text(encoding='utf-8').strip()
        except FileNotFoundError:
            return None
        try:
            return int(text)
        except ValueError:
            logger.warning(f"Pid file {node.pid_file} does not contain a pid: {text!r}")
            return None

    def check(self, node: NodeInfo) -> None:
        """
        Raise StaleProcessError if the pid file points at a live server.

        A pid that is gone or owned by an unrelated program is a leftover from
        a crashed run: the file is removed so nothing later kills that pid.
        """
        if not node.pid_file.exists():
            return

        pid = self.read_pid(node)
        processes = self.process_lookup.list_processes()
        identity = processes.get(pid) if pid is not None else None

        if identity is not None and self.identity_for(node) in identity:
            logger.error(f"pid file: {node.pid_file}")
            logger.error(f"pid: {pid}")
            logger.error(f"process: {identity}")
            raise StaleProcessError(str(node.pid_file), pid, identity)

        if identity is None:
            logger.warning(f"Removing stale pid file {node.pid_file}: pid {pid} is not running")
        else:
            logger.warning(f"Removing stale pid file {node.pid_file}: pid {pid} belongs to '{identity}'")
        node.pid_file.unlink(missing_ok=True)
