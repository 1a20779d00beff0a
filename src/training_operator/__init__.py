"""Kubernetes operator for distributed machine-learning training jobs."""

__version__ = "0.1.0"
