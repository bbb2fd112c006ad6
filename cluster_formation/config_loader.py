"""
Config Loader - reads cluster definitions from YAML or JSON
"""
import json
import yaml
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, Union

from .errors import ConfigurationError
from .models import ClusterConfig, DistributionKind


def validate_config(config: ClusterConfig) -> bool:
    """Reject configurations that can never produce a working cluster"""
    DistributionKind.from_value(config.distribution)

    if not isinstance(config.num_nodes, int) or config.num_nodes < 1:
        raise ConfigurationError(f"num_nodes must be at least 1, got {config.num_nodes}")

    for label, base in (('base_http_port', config.base_http_port), ('base_transport_port', config.base_transport_port)):
        if base < 1 or base + config.num_nodes - 1 > 65535:
            raise ConfigurationError(f"{label} {base} leaves no room for {config.num_nodes} node(s)")

    http_ports = set(range(config.base_http_port, config.base_http_port + config.num_nodes))
    transport_ports = set(range(config.base_transport_port, config.base_transport_port + config.num_nodes))
    if http_ports & transport_ports:
        raise ConfigurationError("http and transport port ranges overlap")

    if not config.name or ':' in config.name or '/' in config.name:
        raise ConfigurationError(f"Invalid cluster name: {config.name!r}")

    for name, argv in config.setup_commands.items():
        if not isinstance(argv, (list, tuple)):
            raise ConfigurationError(f"Setup command {name} must be a list of arguments, got {argv!r}")
        if not argv:
            raise ConfigurationError(f"Setup command {name} is empty")

    if config.wait_timeout <= 0 or config.wait_interval <= 0:
        raise ConfigurationError("wait_timeout and wait_interval must be positive")

    return True


class ConfigLoader:
    """Utility class for loading and saving cluster configurations"""

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ClusterConfig:
        """Build and validate a ClusterConfig from a plain mapping"""
        if not isinstance(data, dict):
            raise ConfigurationError("Cluster configuration must be a mapping")

        data = data.get('cluster', data)
        known = {f.name for f in fields(ClusterConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

        config = ClusterConfig(**data)
        validate_config(config)
        return config

    @staticmethod
    def load_from_string(config_text: str) -> ClusterConfig:
        """Load a configuration from YAML text (JSON is valid YAML too)"""
        try:
            data = yaml.safe_load(config_text)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax: {e}")
        return ConfigLoader.from_dict(data)

    @staticmethod
    def load_from_file(file_path: Union[str, Path]) -> ClusterConfig:
        """Load a configuration from a .yaml, .yml or .json file"""
        path = Path(file_path)

        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix in ['.yaml', '.yml']:
                return ConfigLoader.load_from_string(f.read())
            elif path.suffix == '.json':
                try:
                    return ConfigLoader.from_dict(json.load(f))
                except json.JSONDecodeError as e:
                    raise ConfigurationError(f"Invalid JSON in {path}: {e}")
            else:
                raise ConfigurationError(f"Unsupported config format: {path.suffix}")

    @staticmethod
    def to_dict(config: ClusterConfig) -> Dict[str, Any]:
        data = asdict(config)
        data['distribution'] = config.distribution.value
        return data

    @staticmethod
    def save_config(config: ClusterConfig, file_path: Union[str, Path]) -> None:
        """Write a configuration back out as YAML"""
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump({'cluster': ConfigLoader.to_dict(config)}, f, default_flow_style=False, sort_keys=False)
