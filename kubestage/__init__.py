"""KubeStage: staged, dependency-ordered Kubernetes deployments."""

__version__ = "0.1.0"
