"""
Core data models for cluster formation
"""
import io
import subprocess
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .errors import ConfigurationError


DEFAULT_DEBUG_ENV = {
    'JAVA_OPTS': '-agentlib:jdwp=transport=dt_socket,server=y,suspend=y,address=8000'
}


class DistributionKind(Enum):
    """Archive formats a server distribution can be shipped in"""
    ZIP = "zip"
    TAR = "tar"

    @classmethod
    def from_value(cls, value) -> 'DistributionKind':
        if isinstance(value, cls):
            return value
        for kind in cls:
            if kind.value == str(value).lower():
                return kind
        raise ConfigurationError(f"Unknown distribution: {value}")


class BarrierResult(Enum):
    """Outcome of waiting for all nodes of a cluster"""
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class ClusterConfig:
    """Configuration shared by every node of a test cluster"""
    name: str = "integTest"
    num_nodes: int = 1
    base_http_port: int = 9400
    base_transport_port: int = 9500
    distribution: DistributionKind = DistributionKind.ZIP
    distribution_path: Optional[str] = None
    home_dir_name: str = "server"
    work_root: str = "build"
    extensions: Dict[str, str] = field(default_factory=dict)
    setup_commands: Dict[str, List[str]] = field(default_factory=dict)
    daemonize: bool = True
    debug: bool = False
    process_args: List[str] = field(default_factory=list)
    process_args_env: str = "SERVER_OPTS"
    system_properties: Dict[str, str] = field(default_factory=dict)
    property_arg_format: str = "-D{key}={value}"
    inherit_properties_prefix: Optional[str] = None
    java_home: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    debug_env: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_DEBUG_ENV))
    server_script: str = "bin/server"
    install_script: str = "bin/plugin"
    install_args: List[str] = field(default_factory=lambda: ["install"])
    config_file_name: str = "server.yml"
    settings: Dict[str, str] = field(default_factory=dict)
    process_identity: Optional[str] = None
    identity_lookup: str = "psutil"
    probe: str = "http"
    wait_timeout: float = 30.0
    wait_interval: float = 0.5
    log_tail_lines: int = 100

    def __post_init__(self):
        self.distribution = DistributionKind.from_value(self.distribution)


@dataclass
class NodeInfo:
    """Resolved identity and runtime state of one node in a cluster"""
    node_num: int
    cluster_name: str
    num_nodes: int
    base_dir: Path
    home_dir: Path
    cwd: Path
    plugins_tmp_dir: Path
    pid_file: Path
    failed_marker: Path
    start_log: Path
    http_port: int
    transport_port: int
    server_script: Path
    env: Dict[str, str] = field(default_factory=dict)
    args: List[str] = field(default_factory=list)
    output_buffer: io.BytesIO = field(default_factory=io.BytesIO)
    process: Optional[subprocess.Popen] = None
    error: Optional[Exception] = None
    start_issued: threading.Event = field(default_factory=threading.Event)

    @property
    def node_id(self) -> str:
        return f"node{self.node_num}"

    def failed(self) -> bool:
        """True once the node has authoritative evidence of a failed startup"""
        return self.error is not None or self.failed_marker.exists()

    def command_string(self) -> str:
        """Returns debug text for the command that started this node"""
        command = f"Node {self.node_num} command: {self.server_script} " + ' '.join(self.args)
        command += '\nenvironment:'
        for key, value in self.env.items():
            command += f"\n  {key}: {value}"
        return command

    def buffered_output(self) -> str:
        return self.output_buffer.getvalue().decode('utf-8', errors='replace')
