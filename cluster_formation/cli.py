#!/usr/bin/env python3
"""
Command-line interface for Cluster Formation
Provides commands for starting, stopping and validating test clusters, and for
running a test command against a cluster that is torn down afterwards.
"""
import sys
import argparse
import traceback
import subprocess
import logging
from typing import List

from .config_loader import ConfigLoader
from .errors import ClusterFormationError, ClusterStartError
from .main import ClusterFormation
from .models import ClusterConfig, NodeInfo


class ClusterCLI:
    """Command-line interface for Cluster Formation"""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.formation = ClusterFormation(verbose=verbose)

    def load_config(self, config_path: str) -> ClusterConfig:
        return ConfigLoader.load_from_file(config_path)

    def start_cluster(self, args) -> int:
        """Start a cluster and leave it running"""
        config = self.load_config(args.config)
        self._print_header(f"Starting cluster: {config.name}")

        nodes = self.formation.start(config)
        self._print_nodes(nodes)

        if not config.daemonize:
            print("Nodes are running in the foreground, press Ctrl+C to stop")
            self.formation.wait()
        else:
            print(f"\nStop with: cluster-formation stop --config {args.config}")
        return 0

    def stop_cluster(self, args) -> int:
        """Stop a cluster from its pid files"""
        config = self.load_config(args.config)
        self._print_header(f"Stopping cluster: {config.name}")
        self.formation.stop(config)
        print("Cluster stopped")
        return 0

    def run_with_cluster(self, args) -> int:
        """Run a test command against a fresh cluster, stopping the cluster afterwards"""
        command = args.command
        if command and command[0] == '--':
            command = command[1:]
        if not command:
            print("Error: run requires a command after --")
            return 1

        config = self.load_config(args.config)
        self._print_header(f"Running against cluster: {config.name}")

        def workload(nodes: List[NodeInfo]) -> int:
            self._print_nodes(nodes)
            print(f"\nRunning: {' '.join(command)}")
            return subprocess.call(command)

        exit_code = self.formation.run(config, workload)
        status = "PASSED" if exit_code == 0 else "FAILED"
        print(f"\nStatus: {status} (exit code {exit_code})")
        return exit_code

    def validate_config(self, args) -> int:
        """Validate a cluster configuration file"""
        self._print_header(f"Validating config: {args.file}")

        try:
            config = self.load_config(args.file)
        except ClusterFormationError as e:
            print(f"\nError: Validation failed: {e}")
            return 1

        print(f"Cluster: {config.name}")
        print(f"Distribution: {config.distribution.value} ({config.distribution_path})")
        print(f"Daemonize: {config.daemonize}")
        print(f"Extensions: {len(config.extensions)}")
        print(f"Setup commands: {len(config.setup_commands)}")
        self._print_nodes(self.formation.plan(config))
        print("\nConfiguration is valid!")
        return 0

    def _print_header(self, title: str):
        """Print formatted header"""
        print()
        print("=" * 80)
        print(title)
        print("=" * 80)
        print()

    def _print_nodes(self, nodes: List[NodeInfo]):
        print(f"Nodes: {len(nodes)}")
        for node in nodes:
            print(f"  {node.node_id}: http={node.http_port} transport={node.transport_port} dir={node.base_dir}")


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog='cluster-formation',
        description='Cluster Formation - start, check and tear down local server clusters for integration tests',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start a cluster and leave it running
  cluster-formation start --config cluster.yaml

  # Stop it again
  cluster-formation stop --config cluster.yaml

  # Run a test command against a fresh cluster
  cluster-formation run --config cluster.yaml -- pytest tests/integration

  # Validate a configuration file
  cluster-formation validate cluster.yaml
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version='Cluster Formation 0.1.0'
    )

    subparsers = parser.add_subparsers(dest='command_name', help='Command to execute')

    start_parser = subparsers.add_parser('start', help='Set up and start a cluster')
    start_parser.add_argument('--config', required=True, help='Path to cluster configuration (YAML or JSON)')
    start_parser.add_argument('--verbose', action='store_true', help='Stream process output live')

    stop_parser = subparsers.add_parser('stop', help='Stop a cluster using its pid files')
    stop_parser.add_argument('--config', required=True, help='Path to cluster configuration (YAML or JSON)')
    stop_parser.add_argument('--verbose', action='store_true', help='Enable verbose output')

    run_parser = subparsers.add_parser('run', help='Run a command against a cluster that is stopped afterwards')
    run_parser.add_argument('--config', required=True, help='Path to cluster configuration (YAML or JSON)')
    run_parser.add_argument('--verbose', action='store_true', help='Stream process output live')
    run_parser.add_argument('command', nargs=argparse.REMAINDER, help='Command to run, after --')

    validate_parser = subparsers.add_parser('validate', help='Validate a cluster configuration file')
    validate_parser.add_argument('file', help='Path to cluster configuration (YAML or JSON)')
    validate_parser.add_argument('--verbose', action='store_true', help='Enable verbose output')

    return parser


def main(argv=None):
    """Main entry point for CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)
    verbose = getattr(args, 'verbose', False)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s',
        handlers=[logging.StreamHandler()],
        force=True
    )

    if not args.command_name:
        print("Error: No command specified\n")
        parser.print_help()
        return 1

    cli = ClusterCLI(verbose=verbose)

    try:
        if args.command_name == 'start':
            return cli.start_cluster(args)
        elif args.command_name == 'stop':
            return cli.stop_cluster(args)
        elif args.command_name == 'run':
            return cli.run_with_cluster(args)
        elif args.command_name == 'validate':
            return cli.validate_config(args)
    except KeyboardInterrupt:
        print("\n\nCluster Formation was interrupted by user")
        return 130
    except ClusterStartError as e:
        print(f"\nError: {e}")
        print("See the per-node diagnostics above for start commands, output and logs")
        return 1
    except ClusterFormationError as e:
        print(f"\nError: {e}")
        if verbose:
            traceback.print_exc()
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
