"""
Cluster Formation - ephemeral multi-node server clusters for integration tests
"""
from .models import ClusterConfig, NodeInfo, DistributionKind, BarrierResult
from .config_loader import ConfigLoader
from .main import ClusterFormation

__all__ = [
    'ClusterConfig',
    'NodeInfo',
    'DistributionKind',
    'BarrierResult',
    'ConfigLoader',
    'ClusterFormation',
]
