import os
import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config_loader import validate_config
from ..errors import ConfigurationError, TeardownError
from ..interfaces import IProcessLookup, IReadinessProbe
from ..models import BarrierResult, ClusterConfig, NodeInfo
from .base import BaseClusterOrchestrator
from .diagnostics import DiagnosticsReporter
from .distribution import open_distribution
from .pipeline import SetupPipeline
from .process_lookup import create_process_lookup
from .readiness import ReadinessBarrier, create_probe
from .stale_guard import StaleInstanceGuard
from .supervisor import ProcessSupervisor, stop_node

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)


class PortManager:
    """Assigns http and transport ports to nodes by offset from the cluster's base ports"""

    def __init__(self, base_http_port: int = 9400, base_transport_port: int = 9500):
        self.base_http_port = base_http_port
        self.base_transport_port = base_transport_port
        self.allocated_ports: Dict[int, Tuple[int, int]] = {}

    def allocate_ports(self, node_num: int) -> Tuple[int, int]:
        """Allocate http and transport ports for a node"""
        if node_num in self.allocated_ports:
            raise ConfigurationError(f"Ports for node {node_num} are already allocated")

        http_port = self.base_http_port + node_num
        transport_port = self.base_transport_port + node_num

        self.allocated_ports[node_num] = (http_port, transport_port)
        logger.debug(f"Allocated ports: {http_port}, {transport_port}")
        return http_port, transport_port

    def release_ports(self, node_num: int) -> None:
        """Release allocated ports for a node"""
        self.allocated_ports.pop(node_num, None)


class ConfigurationManager:
    """Derives the per-node layout, ports, environment and arguments of a cluster"""

    def __init__(self, config: ClusterConfig, port_manager: Optional[PortManager] = None):
        self.config = config
        self.port_manager = port_manager or PortManager(config.base_http_port, config.base_transport_port)

    def cluster_root(self) -> Path:
        return Path(self.config.work_root).resolve() / 'cluster'

    def build_env(self) -> Dict[str, str]:
        env = {}
        if self.config.java_home:
            env['JAVA_HOME'] = self.config.java_home
        if self.config.process_args:
            env[self.config.process_args_env] = ' '.join(self.config.process_args)
        env.update(self.config.env)
        return env

    def build_args(self) -> List[str]:
        fmt = self.config.property_arg_format
        args = [fmt.format(key=key, value=value) for key, value in self.config.system_properties.items()]

        prefix = self.config.inherit_properties_prefix
        if prefix:
            for key, value in sorted(os.environ.items()):
                if key.startswith(prefix):
                    args.append(fmt.format(key=key, value=value))
        return args

    def create_node(self, node_num: int) -> NodeInfo:
        """Create the NodeInfo for one node index"""
        base_dir = self.cluster_root() / f"{self.config.name} node{node_num}"
        home_dir = base_dir / self.config.home_dir_name
        cwd = base_dir / 'cwd'
        http_port, transport_port = self.port_manager.allocate_ports(node_num)

        return NodeInfo(
            node_num=node_num,
            cluster_name=self.config.name,
            num_nodes=self.config.num_nodes,
            base_dir=base_dir,
            home_dir=home_dir,
            cwd=cwd,
            plugins_tmp_dir=base_dir / 'plugins tmp',
            pid_file=base_dir / 'server.pid',
            failed_marker=cwd / 'run.failed',
            start_log=cwd / 'run.log',
            http_port=http_port,
            transport_port=transport_port,
            server_script=home_dir / self.config.server_script,
            env=self.build_env(),
            args=self.build_args()
        )

    def plan_nodes(self) -> List[NodeInfo]:
        """One NodeInfo per node index, in index order"""
        logger.info(f"Planning {self.config.num_nodes} node(s) for cluster {self.config.name}")
        nodes = []
        for node_num in range(self.config.num_nodes):
            node = self.create_node(node_num)
            logger.info(f"{node.node_id}: http port {node.http_port}, transport port {node.transport_port}")
            nodes.append(node)
        return nodes


class ClusterOrchestrator(BaseClusterOrchestrator):
    """
    Sets up, starts and tears down a local test cluster.

    Every node runs its own SetupPipeline on a worker thread. Once every node
    has issued its start (or failed trying), the ReadinessBarrier joins them
    and any failure is reported for the whole cluster at once.
    """

    def __init__(self, process_lookup: Optional[IProcessLookup] = None,
                 probe: Optional[IReadinessProbe] = None, verbose: Optional[bool] = None):
        self.process_lookup = process_lookup
        self.probe = probe
        if verbose is None:
            verbose = logging.getLogger().isEnabledFor(logging.DEBUG)
        self.verbose = verbose
        self.executor: Optional[ThreadPoolExecutor] = None

    def plan_nodes(self, config: ClusterConfig) -> List[NodeInfo]:
        validate_config(config)
        return ConfigurationManager(config).plan_nodes()

    def start_cluster(self, config: ClusterConfig, nodes: Optional[List[NodeInfo]] = None) -> List[NodeInfo]:
        """Run every node's setup pipeline and wait until the whole cluster is ready"""
        validate_config(config)
        config = copy.deepcopy(config)
        archive = open_distribution(config.distribution, config.distribution_path)
        process_lookup = self.process_lookup or create_process_lookup(config.identity_lookup)
        probe = self.probe or create_probe(config.probe)

        if nodes is None:
            nodes = self.plan_nodes(config)

        supervisor = ProcessSupervisor(config, verbose=self.verbose)
        guard = StaleInstanceGuard(process_lookup, config.process_identity)

        logger.info(f"Starting cluster {config.name} with {len(nodes)} node(s)")
        self.executor = ThreadPoolExecutor(max_workers=len(nodes), thread_name_prefix=config.name)
        for node in nodes:
            pipeline = SetupPipeline(config, node, supervisor, guard, archive, verbose=self.verbose)
            self.executor.submit(pipeline.run)

        # the barrier joins on starts having been issued, not on them having finished
        for node in nodes:
            node.start_issued.wait()

        barrier = ReadinessBarrier(probe, timeout=config.wait_timeout, interval=config.wait_interval)
        result = barrier.wait(nodes)

        if config.daemonize:
            self.wait()
        elif result != BarrierResult.READY:
            self.abort_foreground(nodes)

        if result != BarrierResult.READY:
            DiagnosticsReporter(config.log_tail_lines).report(nodes, result)

        logger.info(f"Cluster {config.name} is ready")
        return nodes

    def wait(self) -> None:
        """Block until every node's pipeline has returned; foreground nodes return when they exit"""
        if self.executor is not None:
            self.executor.shutdown(wait=True)
            self.executor = None

    def abort_foreground(self, nodes: List[NodeInfo]) -> None:
        """Kill foreground nodes of a cluster that failed to start and join their pipelines"""
        for node in nodes:
            if node.process is not None and node.process.poll() is None:
                logger.info(f"Killing foreground node {node.node_num} with pid {node.process.pid}")
                node.process.kill()
        self.wait()
        for node in nodes:
            node.pid_file.unlink(missing_ok=True)

    def stop_cluster(self, nodes: List[NodeInfo]) -> None:
        """Stop nodes in reverse order; one node failing to stop never blocks the others"""
        if not nodes:
            return
        logger.info(f"Stopping cluster {nodes[0].cluster_name}")
        failures = []
        for node in reversed(nodes):
            try:
                if not stop_node(node):
                    logger.info(f"Node {node.node_num} has no pid file, already stopped")
            except TeardownError as e:
                logger.error(f"{e}")
                failures.extend(e.failures)

        if failures:
            raise TeardownError(failures)
        logger.info(f"Cluster {nodes[0].cluster_name} stopped")
