"""
Error taxonomy for cluster formation

Every failure raised by the orchestrator derives from ClusterFormationError
and carries an ErrorCategory so callers can tell a bad config from a node
that never came up.
"""
from enum import Enum
from typing import List, Optional, Sequence


class ErrorCategory(Enum):
    """Categories of errors for targeted handling"""
    CONFIGURATION = "configuration"
    STALE_PROCESS = "stale_process"
    PROCESS_LOOKUP = "process_lookup"
    STAGE = "stage"
    CLUSTER_START = "cluster_start"
    TEARDOWN = "teardown"


class ClusterFormationError(Exception):
    """Base class for all cluster formation failures"""
    category = ErrorCategory.STAGE


class ConfigurationError(ClusterFormationError):
    """Invalid cluster configuration, detected before any process is spawned"""
    category = ErrorCategory.CONFIGURATION


class StaleProcessError(ClusterFormationError):
    """A live server from a previous run still owns the node's pid file"""
    category = ErrorCategory.STALE_PROCESS

    def __init__(self, pid_file: str, pid: int, identity: str):
        self.pid_file = pid_file
        self.pid = pid
        self.identity = identity
        super().__init__(
            f"stale pid file {pid_file} (pid {pid}) is owned by a live server ({identity}), "
            f"was a previous cluster not stopped?"
        )


class ProcessLookupUnavailableError(ClusterFormationError):
    """The process-identity listing could not be obtained"""
    category = ErrorCategory.PROCESS_LOOKUP


class StageFailureError(ClusterFormationError):
    """A setup pipeline stage failed; aborts that node's pipeline only"""
    category = ErrorCategory.STAGE

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"{stage}: {message}")


class CommandFailedError(StageFailureError):
    """A setup or install command exited with a non-zero status"""

    def __init__(self, stage: str, argv: Sequence[str], exit_code: int, output: str = ""):
        self.argv = [str(arg) for arg in argv]
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            stage,
            f"Process '{' '.join(self.argv)}' finished with non-zero exit value {exit_code}"
        )


class ClusterStartError(ClusterFormationError):
    """Aggregate failure raised once the readiness barrier gives up"""
    category = ErrorCategory.CLUSTER_START

    def __init__(self, message: str, report: str = "", failed_nodes: Optional[List[int]] = None):
        self.report = report
        self.failed_nodes = failed_nodes or []
        super().__init__(message)


class TeardownError(ClusterFormationError):
    """One or more nodes could not be stopped"""
    category = ErrorCategory.TEARDOWN

    def __init__(self, failures: List[str]):
        self.failures = failures
        super().__init__("Failed to stop cluster: " + "; ".join(failures))
