"""Cluster access for KubeStage.

Submodules:
    base  -- ClusterClient: the abstract request/response interface.
    kube  -- KubernetesClusterClient: kubernetes-asyncio implementation.
"""

from kubestage.cluster.base import ClusterClient

__all__ = ["ClusterClient"]
