"""sparkctl Pydantic schemas for configuration and results."""

from .cluster import (
    ClusterSettings,
    ClusterSpec,
    WorkerNode,
)
from .benchmark import BenchmarkResult

__all__ = [
    'ClusterSettings',
    'ClusterSpec',
    'WorkerNode',
    'BenchmarkResult',
]
