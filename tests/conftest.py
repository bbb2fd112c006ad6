"""
Shared fixtures: throwaway server distributions and cluster configs
"""
import sys
import socket
import random
import tarfile
import zipfile
from pathlib import Path

import pytest

from cluster_formation.models import ClusterConfig


HTTP_SERVER_SCRIPT = """#!/bin/sh
HOME_DIR="$(cd "$(dirname "$0")/.." && pwd)"
CONF="$HOME_DIR/config/server.yml"
PORT=$(sed -n 's/^http\\.port: //p' "$CONF")
PIDFILE=$(sed -n 's/^pidfile: //p' "$CONF")
echo $$ > "$PIDFILE"
exec "{python}" -m http.server "$PORT" --bind 127.0.0.1 --directory "$HOME_DIR"
"""

FAILING_SERVER_SCRIPT = """#!/bin/sh
echo "boom: unable to bind transport port"
exit 3
"""

PLUGIN_SCRIPT = """#!/bin/sh
# records every install request next to the distribution
echo "$@" >> "$(dirname "$0")/../installed.txt"
"""


def build_distribution(target: Path, kind: str = 'zip', server_script: str = None,
                       home_dir_name: str = 'server') -> Path:
    """Write a minimal server distribution archive and return its path"""
    if server_script is None:
        server_script = HTTP_SERVER_SCRIPT.format(python=sys.executable)
    files = {
        f"{home_dir_name}/bin/server": server_script,
        f"{home_dir_name}/bin/plugin": PLUGIN_SCRIPT,
        f"{home_dir_name}/README": "test distribution\n",
    }

    if kind == 'zip':
        archive_path = target / 'server.zip'
        with zipfile.ZipFile(archive_path, 'w') as archive:
            for name, content in files.items():
                archive.writestr(name, content)
    else:
        archive_path = target / 'server.tar.gz'
        source_dir = target / 'tar-src'
        for name, content in files.items():
            path = source_dir / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        with tarfile.open(archive_path, 'w:gz') as archive:
            archive.add(source_dir / home_dir_name, arcname=home_dir_name)
    return archive_path


def port_is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(('127.0.0.1', port))
            return True
        except OSError:
            return False


def free_port_range(count: int, exclude=()) -> int:
    """First port of `count` consecutive free ports"""
    for _ in range(200):
        base = random.randint(20000, 40000)
        ports = range(base, base + count)
        if any(p in exclude for p in ports):
            continue
        if all(port_is_free(p) for p in ports):
            return base
    raise RuntimeError("No free port range found")


@pytest.fixture
def distribution(tmp_path):
    return build_distribution(tmp_path)


@pytest.fixture
def make_config(tmp_path, distribution):
    """Factory for configs rooted in the test's temporary directory"""
    def _make(**overrides):
        values = dict(
            name='integTest',
            num_nodes=1,
            distribution='zip',
            distribution_path=str(distribution),
            work_root=str(tmp_path / 'build'),
            wait_timeout=5.0,
            wait_interval=0.05,
        )
        values.update(overrides)
        return ClusterConfig(**values)
    return _make
