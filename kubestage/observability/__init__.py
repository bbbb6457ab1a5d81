"""Logging and metrics for KubeStage."""
