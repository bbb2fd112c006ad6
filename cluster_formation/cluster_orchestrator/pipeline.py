"""
Setup Pipeline - ordered per-node stages that prepare and start a node

clean -> checkPrevious -> stopPrevious -> extract -> configure -> copyPlugins
-> install<Name>Plugin... -> setup commands... -> start
"""
import re
import shutil
import logging
import subprocess
from pathlib import Path
from typing import Callable, List, Sequence, Tuple

from ..errors import ClusterFormationError, CommandFailedError, StageFailureError
from ..interfaces import IDistributionArchive
from ..models import ClusterConfig, NodeInfo
from .distribution import extract_distribution
from .stale_guard import StaleInstanceGuard
from .supervisor import ProcessSupervisor, script_prefix, stop_node

logger = logging.getLogger(__name__)

Stage = Tuple[str, Callable[[], None]]


def stage_name(config: ClusterConfig, node: NodeInfo, action: str) -> str:
    """Unique, human readable name of one stage of one node"""
    if config.num_nodes > 1:
        return f"{config.name}#node{node.node_num}.{action}"
    return f"{config.name}#{action}"


def install_action_name(extension: str) -> str:
    """'analysis-icu' -> 'installAnalysisIcuPlugin'"""
    camel = re.sub(r'-(\w)', lambda m: m.group(1).upper(), extension)
    return f"install{camel[:1].upper()}{camel[1:]}Plugin"


def discovery_hosts(base_transport_port: int, num_nodes: int) -> str:
    """Seed list of every node's transport address, in node index order"""
    return ','.join(f"127.0.0.1:{base_transport_port + i}" for i in range(num_nodes))


def render_config(config: ClusterConfig, node: NodeInfo) -> str:
    """Render the node's key-value configuration document"""
    settings = {
        'cluster.name': node.cluster_name,
        'http.port': node.http_port,
        'transport.tcp.port': node.transport_port,
        'pidfile': node.pid_file,
        'discovery.zen.ping.unicast.hosts': discovery_hosts(config.base_transport_port, config.num_nodes),
        'path.repo': node.home_dir / 'repo',
        'path.shared_data': node.base_dir,
        # static attribute so tests can check it exists
        'node.testattr': 'test',
        'repositories.url.allowed_urls': 'http://snapshot.test*',
    }
    settings.update(config.settings)
    return '\n'.join(f"{key}: {value}" for key, value in settings.items())


def run_command(stage: str, argv: Sequence[str], cwd: Path, verbose: bool = False) -> None:
    """
    Run a setup command in cwd.

    Output is buffered and only logged when the command fails, unless verbose
    is set, in which case it streams straight to the console.
    """
    argv = [str(arg) for arg in argv]
    logger.info(f"{stage}: {' '.join(argv)}")
    try:
        if verbose:
            result = subprocess.run(argv, cwd=cwd)
            output = ""
        else:
            result = subprocess.run(argv, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
            output = result.stdout.decode('utf-8', errors='replace')
    except OSError as e:
        raise StageFailureError(stage, f"Could not run '{' '.join(argv)}': {e}")

    if result.returncode != 0:
        if output:
            logger.error(output)
        raise CommandFailedError(stage, argv, result.returncode, output)


class StagedExtension:
    """Handle to an extension artifact whose staged location is only known after copyPlugins ran"""

    def __init__(self, name: str, artifact: str, staging_dir: Path):
        self.name = name
        self.artifact = Path(artifact)
        self.staging_dir = staging_dir

    def location(self) -> str:
        staged = self.staging_dir / self.artifact.name
        if not staged.exists():
            raise StageFailureError(
                install_action_name(self.name),
                f"Extension {self.name} was not staged at {staged}"
            )
        return staged.resolve().as_uri()


class SetupPipeline:
    """Builds and runs the ordered stages for a single node"""

    def __init__(self, config: ClusterConfig, node: NodeInfo, supervisor: ProcessSupervisor,
                 guard: StaleInstanceGuard, archive: IDistributionArchive, verbose: bool = False):
        self.config = config
        self.node = node
        self.supervisor = supervisor
        self.guard = guard
        self.archive = archive
        self.verbose = verbose

    def clean(self) -> None:
        for directory in (self.node.home_dir, self.node.cwd):
            if directory.exists():
                shutil.rmtree(directory)
        self.node.cwd.mkdir(parents=True)

    def check_previous(self) -> None:
        self.guard.check(self.node)

    def stop_previous(self) -> None:
        stop_node(self.node)

    def extract(self) -> None:
        extract_distribution(self.archive, self.node.base_dir, stage_name(self.config, self.node, 'extract'))

    def write_config(self) -> None:
        config_file = self.node.home_dir / 'config' / self.config.config_file_name
        logger.info(f"Configuring {config_file}")
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text(render_config(self.config, self.node), encoding='utf-8')

    def copy_extensions(self) -> None:
        self.node.plugins_tmp_dir.mkdir(parents=True, exist_ok=True)
        for name, artifact in self.config.extensions.items():
            source = Path(artifact)
            if not source.is_file():
                raise StageFailureError(
                    stage_name(self.config, self.node, 'copyPlugins'),
                    f"Extension {name} artifact not found: {source}"
                )
            shutil.copy2(source, self.node.plugins_tmp_dir / source.name)

    def install_extension(self, stage: str, extension: StagedExtension) -> None:
        argv = script_prefix() + [str(self.node.home_dir / self.config.install_script)]
        argv += list(self.config.install_args) + [extension.location()]
        run_command(stage, argv, self.node.cwd, self.verbose)

    def start(self) -> None:
        self.supervisor.start(self.node)

    def build_stages(self) -> List[Stage]:
        """Ordered (name, action) pairs; nothing runs until run() is called"""
        def name(action: str) -> str:
            return stage_name(self.config, self.node, action)

        stages: List[Stage] = [
            (name('clean'), self.clean),
            (name('checkPrevious'), self.check_previous),
            (name('stopPrevious'), self.stop_previous),
            (name('extract'), self.extract),
            (name('configure'), self.write_config),
        ]

        if self.config.extensions:
            stages.append((name('copyPlugins'), self.copy_extensions))

        for extension_name, artifact in self.config.extensions.items():
            stage = name(install_action_name(extension_name))
            extension = StagedExtension(extension_name, artifact, self.node.plugins_tmp_dir)
            stages.append((stage, lambda stage=stage, extension=extension: self.install_extension(stage, extension)))

        for command_name, argv in self.config.setup_commands.items():
            stage = name(command_name)
            stages.append((stage, lambda stage=stage, argv=argv: run_command(stage, argv, self.node.cwd, self.verbose)))

        stages.append((name('start'), self.start))
        return stages

    def run(self) -> None:
        """Run every stage in order; the first failure is recorded on the node and re-raised"""
        try:
            for stage, action in self.build_stages():
                logger.debug(f"Running {stage}")
                try:
                    action()
                except ClusterFormationError:
                    raise
                except Exception as e:
                    raise StageFailureError(stage, str(e)) from e
        except Exception as e:
            logger.error(f"Node {self.node.node_num} setup failed: {e}")
            self.node.error = e
            raise
        finally:
            self.node.start_issued.set()
