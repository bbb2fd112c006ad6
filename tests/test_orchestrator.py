import os
import time
import threading
import logging
import pytest
from pathlib import Path
from unittest.mock import Mock, patch

import requests

from cluster_formation.cluster_orchestrator.orchestrator import ClusterOrchestrator
from cluster_formation.errors import ClusterStartError, StageFailureError, TeardownError

from conftest import FAILING_SERVER_SCRIPT, build_distribution, free_port_range

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)

REPO_ROOT = Path(__file__).resolve().parent.parent

posix_only = pytest.mark.skipif(os.name == 'nt', reason="test distributions ship sh scripts")


@pytest.fixture(autouse=True)
def test_separator(request):
    print(f"\n{'='*60}")
    print(f"Running: {request.node.name}")
    print(f"{'='*60}")
    yield
    print(f"{'='*60}")
    print(f"Completed: {request.node.name}")
    print(f"{'='*60}\n")


@pytest.fixture
def relauncher_env(monkeypatch):
    """Detached relaunchers run in a fresh interpreter that must import this package"""
    existing = os.environ.get('PYTHONPATH')
    path = str(REPO_ROOT) if not existing else os.pathsep.join([str(REPO_ROOT), existing])
    monkeypatch.setenv('PYTHONPATH', path)


def wait_until_refused(port, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            requests.get(f"http://localhost:{port}", timeout=0.5)
        except requests.RequestException:
            return True
        time.sleep(0.1)
    return False


class FakePipeline:
    """Stands in for SetupPipeline: node 1 fails during extract, the others come up"""

    def __init__(self, config, node, *args, **kwargs):
        self.node = node

    def run(self):
        try:
            if self.node.node_num == 1:
                self.node.error = StageFailureError('integTest#node1.extract', 'bad archive')
                raise self.node.error
            self.node.cwd.mkdir(parents=True, exist_ok=True)
            self.node.pid_file.write_text('12345')
        finally:
            self.node.start_issued.set()


@patch('cluster_formation.cluster_orchestrator.orchestrator.SetupPipeline', FakePipeline)
def test_one_failed_node_fails_the_cluster(make_config):
    """A single failed node turns into one aggregate error covering the whole cluster"""
    probe = Mock()
    probe.is_ready.return_value = True
    orchestrator = ClusterOrchestrator(process_lookup=Mock(), probe=probe)

    with pytest.raises(ClusterStartError) as exc_info:
        orchestrator.start_cluster(make_config(num_nodes=3))

    error = exc_info.value
    assert error.failed_nodes == [1]
    assert "Node 1 setup failed: integTest#node1.extract: bad archive" in error.report
    assert "Node 0 command:" in error.report
    assert "Node 2 command:" in error.report


@patch('cluster_formation.cluster_orchestrator.orchestrator.SetupPipeline', FakePipeline)
def test_all_nodes_ready(make_config):
    probe = Mock()
    probe.is_ready.return_value = True
    orchestrator = ClusterOrchestrator(process_lookup=Mock(), probe=probe)

    nodes = orchestrator.start_cluster(make_config(num_nodes=1))

    assert [n.node_num for n in nodes] == [0]
    assert nodes[0].pid_file.read_text() == '12345'


def test_run_stops_cluster_when_workload_fails(make_config):
    orchestrator = ClusterOrchestrator(process_lookup=Mock(), probe=Mock())
    config = make_config(num_nodes=2)

    with patch.object(orchestrator, 'start_cluster') as mock_start, \
            patch.object(orchestrator, 'stop_cluster') as mock_stop:
        with pytest.raises(RuntimeError, match="tests crashed"):
            orchestrator.run(config, Mock(side_effect=RuntimeError("tests crashed")))

    mock_start.assert_called_once()
    nodes = mock_stop.call_args[0][0]
    assert [n.node_num for n in nodes] == [0, 1]


def test_run_stops_cluster_when_start_fails(make_config):
    orchestrator = ClusterOrchestrator(process_lookup=Mock(), probe=Mock())
    workload = Mock()

    with patch.object(orchestrator, 'start_cluster', side_effect=ClusterStartError("no")), \
            patch.object(orchestrator, 'stop_cluster') as mock_stop:
        with pytest.raises(ClusterStartError):
            orchestrator.run(make_config(), workload)

    workload.assert_not_called()
    mock_stop.assert_called_once()


def test_run_leaves_foreground_cluster_alone(make_config):
    orchestrator = ClusterOrchestrator(process_lookup=Mock(), probe=Mock())

    with patch.object(orchestrator, 'start_cluster'), \
            patch.object(orchestrator, 'stop_cluster') as mock_stop:
        assert orchestrator.run(make_config(daemonize=False), lambda nodes: 7) == 7

    mock_stop.assert_not_called()


@posix_only
def test_two_node_cluster_end_to_end(make_config, relauncher_env):
    """Start two real nodes, talk to them, then tear them down"""
    http_base = free_port_range(2)
    transport_base = free_port_range(2, exclude=range(http_base, http_base + 2))
    config = make_config(num_nodes=2, base_http_port=http_base, base_transport_port=transport_base,
                         wait_timeout=30.0)
    orchestrator = ClusterOrchestrator()

    def workload(nodes):
        for node in nodes:
            assert node.pid_file.exists()
            assert requests.get(f"http://localhost:{node.http_port}", timeout=2).status_code == 200
        return 0

    planned = orchestrator.plan_nodes(config)
    assert orchestrator.run(config, workload) == 0

    for node in planned:
        assert not node.pid_file.exists()
        assert wait_until_refused(node.http_port)


@posix_only
def test_second_start_detects_running_cluster(make_config, relauncher_env):
    http_base = free_port_range(1)
    transport_base = free_port_range(1, exclude=[http_base])
    config = make_config(base_http_port=http_base, base_transport_port=transport_base, wait_timeout=30.0)
    first = ClusterOrchestrator()
    nodes = first.start_cluster(config)

    try:
        with pytest.raises(ClusterStartError) as exc_info:
            ClusterOrchestrator().start_cluster(config)
        assert "was a previous cluster not stopped" in exc_info.value.report
    finally:
        first.stop_cluster(nodes)

    assert wait_until_refused(http_base)


@posix_only
def test_failing_server_reports_its_log(tmp_path, make_config, relauncher_env):
    """A server that exits at startup fails fast, with its own output in the report"""
    failing_dir = tmp_path / 'failing'
    failing_dir.mkdir()
    archive = build_distribution(failing_dir, server_script=FAILING_SERVER_SCRIPT)
    config = make_config(distribution_path=str(archive), base_http_port=free_port_range(1), wait_timeout=30.0)

    start = time.monotonic()
    with pytest.raises(ClusterStartError) as exc_info:
        ClusterOrchestrator().start_cluster(config)

    assert time.monotonic() - start < 20
    assert exc_info.value.failed_nodes == [0]
    assert "boom: unable to bind transport port" in exc_info.value.report


def test_start_error_survives_failed_teardown(make_config):
    """Diagnostics from a failed start are not replaced by a teardown error"""
    orchestrator = ClusterOrchestrator(process_lookup=Mock(), probe=Mock())

    with patch.object(orchestrator, 'start_cluster', side_effect=ClusterStartError("node(s) 0 failed")), \
            patch.object(orchestrator, 'stop_cluster', side_effect=TeardownError(["node 0: denied"])) as mock_stop:
        with pytest.raises(ClusterStartError, match="node\\(s\\) 0 failed"):
            orchestrator.run(make_config(), Mock())

    mock_stop.assert_called_once()


def test_teardown_error_raised_after_successful_workload(make_config):
    orchestrator = ClusterOrchestrator(process_lookup=Mock(), probe=Mock())

    with patch.object(orchestrator, 'start_cluster'), \
            patch.object(orchestrator, 'stop_cluster', side_effect=TeardownError(["node 0: denied"])):
        with pytest.raises(TeardownError):
            orchestrator.run(make_config(), lambda nodes: 0)


class ForegroundPipeline:
    """Stands in for a foreground SetupPipeline that blocks until its process is killed"""

    def __init__(self, config, node, *args, **kwargs):
        self.node = node

    def run(self):
        killed = threading.Event()
        try:
            if self.node.node_num == 1:
                self.node.error = StageFailureError('integTest#node1.start', 'exited with 2')
                raise self.node.error
            self.node.process = Mock(pid=4321)
            self.node.process.poll.return_value = None
            self.node.process.kill.side_effect = killed.set
            self.node.cwd.mkdir(parents=True, exist_ok=True)
            self.node.pid_file.write_text('4321')
        finally:
            self.node.start_issued.set()
        killed.wait(10)


@patch('cluster_formation.cluster_orchestrator.orchestrator.SetupPipeline', ForegroundPipeline)
def test_failed_foreground_cluster_kills_running_nodes(make_config):
    orchestrator = ClusterOrchestrator(process_lookup=Mock(), probe=Mock())

    start = time.monotonic()
    with pytest.raises(ClusterStartError) as exc_info:
        orchestrator.start_cluster(make_config(num_nodes=2, daemonize=False))

    assert time.monotonic() - start < 5
    assert exc_info.value.failed_nodes == [1]
    assert orchestrator.executor is None
    node0_pid_file = orchestrator.plan_nodes(make_config(num_nodes=2))[0].pid_file
    assert not node0_pid_file.exists()
