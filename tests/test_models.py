"""
Tests for data models and node planning
"""
import pytest

from cluster_formation.cluster_orchestrator.orchestrator import ConfigurationManager, PortManager
from cluster_formation.cluster_orchestrator.pipeline import discovery_hosts
from cluster_formation.errors import ConfigurationError
from cluster_formation.models import ClusterConfig, DistributionKind


def test_distribution_kind_from_string():
    """Distribution kinds parse case-insensitively"""
    assert DistributionKind.from_value('zip') == DistributionKind.ZIP
    assert DistributionKind.from_value('TAR') == DistributionKind.TAR
    assert DistributionKind.from_value(DistributionKind.TAR) == DistributionKind.TAR


def test_unknown_distribution_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="Unknown distribution: rpm"):
        ClusterConfig(distribution='rpm')


def test_port_manager_offsets_from_base():
    """Ports are assigned by node index offset"""
    port_mgr = PortManager(base_http_port=9200, base_transport_port=9300)

    assert port_mgr.allocate_ports(0) == (9200, 9300)
    assert port_mgr.allocate_ports(1) == (9201, 9301)
    assert port_mgr.allocated_ports == {0: (9200, 9300), 1: (9201, 9301)}

    with pytest.raises(ConfigurationError):
        port_mgr.allocate_ports(1)

    port_mgr.release_ports(1)
    assert port_mgr.allocate_ports(1) == (9201, 9301)


def test_two_node_example(tmp_path):
    """N=2, base ports (9200, 9300)"""
    config = ClusterConfig(num_nodes=2, base_http_port=9200, base_transport_port=9300, work_root=str(tmp_path))
    nodes = ConfigurationManager(config).plan_nodes()

    assert [(n.http_port, n.transport_port) for n in nodes] == [(9200, 9300), (9201, 9301)]
    assert discovery_hosts(config.base_transport_port, config.num_nodes) == "127.0.0.1:9300,127.0.0.1:9301"


@pytest.mark.parametrize("num_nodes", [1, 2, 3, 5, 8])
def test_ports_are_distinct_and_contiguous(tmp_path, num_nodes):
    config = ClusterConfig(num_nodes=num_nodes, base_http_port=7000, base_transport_port=8000, work_root=str(tmp_path))
    nodes = ConfigurationManager(config).plan_nodes()

    assert len(nodes) == num_nodes
    assert [n.node_num for n in nodes] == list(range(num_nodes))
    assert [n.http_port for n in nodes] == [7000 + i for i in range(num_nodes)]
    assert [n.transport_port for n in nodes] == [8000 + i for i in range(num_nodes)]
    assert len({n.http_port for n in nodes} | {n.transport_port for n in nodes}) == 2 * num_nodes

    seeds = discovery_hosts(config.base_transport_port, num_nodes).split(',')
    assert seeds == [f"127.0.0.1:{8000 + i}" for i in range(num_nodes)]


def test_node_layout(tmp_path):
    """Every node owns a disjoint directory tree under the work root"""
    config = ClusterConfig(num_nodes=2, work_root=str(tmp_path), home_dir_name='server-1.0')
    node0, node1 = ConfigurationManager(config).plan_nodes()

    assert node0.base_dir == tmp_path.resolve() / 'cluster' / 'integTest node0'
    assert node0.home_dir == node0.base_dir / 'server-1.0'
    assert node0.cwd == node0.base_dir / 'cwd'
    assert node0.plugins_tmp_dir == node0.base_dir / 'plugins tmp'
    assert node0.pid_file == node0.base_dir / 'server.pid'
    assert node0.failed_marker == node0.cwd / 'run.failed'
    assert node0.start_log == node0.cwd / 'run.log'
    assert node0.server_script == node0.home_dir / 'bin' / 'server'
    assert node0.cluster_name == node1.cluster_name == 'integTest'
    assert node0.base_dir != node1.base_dir


def test_env_and_args(tmp_path, monkeypatch):
    """Process args, java home and system properties become env and arguments"""
    monkeypatch.setenv('tests.seed', 'ABC123')
    config = ClusterConfig(
        work_root=str(tmp_path),
        java_home='/opt/jdk',
        process_args=['-Xmx512m', '-Xms512m'],
        system_properties={'es.logger.level': 'DEBUG'},
        inherit_properties_prefix='tests.',
        env={'EXTRA': '1'}
    )
    node = ConfigurationManager(config).plan_nodes()[0]

    assert node.env == {'JAVA_HOME': '/opt/jdk', 'SERVER_OPTS': '-Xmx512m -Xms512m', 'EXTRA': '1'}
    assert node.args == ['-Des.logger.level=DEBUG', '-Dtests.seed=ABC123']


def test_command_string(tmp_path):
    config = ClusterConfig(work_root=str(tmp_path), system_properties={'a': 'b'}, env={'K': 'V'})
    node = ConfigurationManager(config).plan_nodes()[0]

    text = node.command_string()
    assert text.startswith(f"Node 0 command: {node.server_script} -Da=b")
    assert "environment:\n  K: V" in text


def test_node_failed_flags(tmp_path):
    node = ConfigurationManager(ClusterConfig(work_root=str(tmp_path))).plan_nodes()[0]
    assert not node.failed()

    node.cwd.mkdir(parents=True)
    node.failed_marker.touch()
    assert node.failed()

    node.failed_marker.unlink()
    node.error = RuntimeError("boom")
    assert node.failed()
