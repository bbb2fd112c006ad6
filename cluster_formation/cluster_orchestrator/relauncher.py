"""
Relauncher - thin wrapper around a detached server start command

Detached spawning discards the child's standard streams, so daemonized nodes
are started through this module instead:

    python -m cluster_formation.cluster_orchestrator.relauncher \\
        --log run.log --failure-marker run.failed -- <start command>

Combined stdout/stderr of the start command is appended to the log file, and
the failure marker is created if and only if the command exits non-zero.
"""
import sys
import argparse
import subprocess
from pathlib import Path
from typing import List, Optional


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='cluster-formation-relauncher',
        description='Run a server start command, logging its output and recording failure'
    )
    parser.add_argument('--log', required=True, help='File receiving combined output')
    parser.add_argument('--failure-marker', required=True, help='File created on non-zero exit')
    parser.add_argument('command', nargs=argparse.REMAINDER, help='Start command, after --')
    return parser


def relaunch(command: List[str], log_path: Path, failure_marker: Path) -> int:
    """Run command with output redirected to log_path; returns its exit code"""
    with open(log_path, 'ab') as log:
        try:
            exit_code = subprocess.call(command, stdout=log, stderr=subprocess.STDOUT)
        except OSError as e:
            log.write(f"Failed to launch {' '.join(command)}: {e}\n".encode('utf-8'))
            exit_code = 127

    if exit_code != 0:
        failure_marker.touch()
    return exit_code


def main(argv: Optional[List[str]] = None) -> int:
    args = create_parser().parse_args(argv)
    command = args.command
    if command and command[0] == '--':
        command = command[1:]
    if not command:
        print("Error: no start command given", file=sys.stderr)
        Path(args.failure_marker).touch()
        return 2
    return relaunch(command, Path(args.log), Path(args.failure_marker))


if __name__ == '__main__':
    sys.exit(main())
