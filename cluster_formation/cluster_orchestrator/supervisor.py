"""
Process Supervisor - starts node processes and kills them by pid file
"""
import os
import sys
import signal
import logging
import subprocess
from typing import Dict, List

from ..errors import StageFailureError, TeardownError
from ..models import ClusterConfig, NodeInfo
from .output_capture import capture_output

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == 'nt'
RELAUNCHER_MODULE = 'cluster_formation.cluster_orchestrator.relauncher'


def script_prefix() -> List[str]:
    """Interpreter used for scripts shipped inside a distribution"""
    if IS_WINDOWS:
        return ['cmd', '/C', 'call']
    return ['sh']


class ProcessSupervisor:
    """Launches one node's server, in the foreground or detached through the relauncher"""

    def __init__(self, config: ClusterConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose

    def start_command(self, node: NodeInfo) -> List[str]:
        return script_prefix() + [str(node.server_script)] + list(node.args)

    def wrapper_command(self, node: NodeInfo) -> List[str]:
        """Relauncher invocation that keeps a durable log and failure marker"""
        return [
            sys.executable, '-m', RELAUNCHER_MODULE,
            '--log', str(node.start_log),
            '--failure-marker', str(node.failed_marker),
            '--',
        ] + self.start_command(node)

    def process_env(self, node: NodeInfo) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(node.env)
        return env

    def start(self, node: NodeInfo) -> None:
        """
        Start the node's server process.

        Daemonized nodes return as soon as the relauncher is spawned. Foreground
        nodes block until the server exits and fail the stage on a non-zero exit.
        Launch messages are written to the node's output buffer and only reach
        the console when output is not being suppressed.
        """
        if self.config.debug:
            print(f"Running node {node.node_num} in debug mode, suspending until connected on port 8000")
            node.env.update(self.config.debug_env)

        quiet = self.config.daemonize and not self.verbose
        with capture_output(node, quiet=quiet) as node_log:
            for line in node.command_string().splitlines():
                node_log.info(line)

            if self.config.daemonize:
                self._spawn_detached(node, node_log)
                return
            exit_code = self._run_foreground(node, node_log)

        if exit_code != 0:
            raise StageFailureError('start', f"Node {node.node_num} exited with non-zero exit value {exit_code}")

    def _spawn_detached(self, node: NodeInfo, node_log: logging.Logger) -> None:
        command = self.wrapper_command(node)
        kwargs = {}
        if IS_WINDOWS:
            kwargs['creationflags'] = subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs['start_new_session'] = True

        try:
            node.process = subprocess.Popen(
                command,
                cwd=node.cwd,
                env=self.process_env(node),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                **kwargs
            )
        except OSError as e:
            raise StageFailureError('start', f"Could not spawn {' '.join(command)}: {e}")
        finally:
            node.start_issued.set()
        node_log.info(f"Spawned relauncher for node {node.node_num} with PID {node.process.pid}")

    def _run_foreground(self, node: NodeInfo, node_log: logging.Logger) -> int:
        command = self.start_command(node)
        try:
            node.process = subprocess.Popen(command, cwd=node.cwd, env=self.process_env(node))
        except OSError as e:
            raise StageFailureError('start', f"Could not spawn {' '.join(command)}: {e}")
        finally:
            node.start_issued.set()
        node_log.info(f"Started node {node.node_num} in the foreground with PID {node.process.pid}")
        return node.process.wait()


def kill_pid(pid: int) -> None:
    """Forcefully kill a process; a process that is already gone counts as killed"""
    if IS_WINDOWS:
        result = subprocess.run(['Taskkill', '/PID', str(pid), '/F'], capture_output=True, text=True)
        if result.returncode != 0 and 'not found' not in (result.stdout + result.stderr):
            raise OSError(f"Taskkill exited with {result.returncode}: {result.stderr.strip()}")
        return
    try:
        os.kill(pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.info(f"Process {pid} already exited")


def stop_node(node: NodeInfo) -> bool:
    """
    Kill the process recorded in the node's pid file and delete the file.

    Returns False when there is no pid file (the node is already down).
    The pid file is removed even when the kill fails; the failure is then
    raised as a TeardownError.
    """
    if not node.pid_file.exists():
        return False

    try:
        pid_text = node.pid_file.read_text(encoding='utf-8').strip()
        logger.info(f"Shutting down external node {node.node_num} with pid {pid_text}")
        kill_pid(int(pid_text))
    except (OSError, ValueError) as e:
        raise TeardownError([f"node {node.node_num}: {e}"])
    finally:
        node.pid_file.unlink(missing_ok=True)
    return True
