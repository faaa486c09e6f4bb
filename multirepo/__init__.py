"""Incremental setup cache for a multi-repository orchestrator."""

from multirepo.fingerprint.manager import CacheManager, CacheStats
from multirepo.options import CacheOptions
from multirepo.repos import RepositoryConfig, load_repositories


__all__ = [
    "CacheManager",
    "CacheStats",
    "CacheOptions",
    "RepositoryConfig",
    "load_repositories",
]
