"""
Setup Cache Fingerprint System

Checksum-based change detection and persistent lock state for the
multi-repository setup orchestrator.
"""

from multirepo.fingerprint.checksum import ChecksumEngine, ExclusionMatcher, TreeFile
from multirepo.fingerprint.config import Phase, PhaseStatus, SetupPaths
from multirepo.fingerprint.lockfile import (
    LoadOutcome,
    LockDocument,
    LockFileSaveError,
    LockStore,
    RepositoryRecord,
)
from multirepo.fingerprint.rules import (
    CacheAction,
    CacheDecision,
    CacheInvalidationRules,
    InvalidationTrigger,
)


__all__ = [
    "ChecksumEngine",
    "ExclusionMatcher",
    "TreeFile",
    "Phase",
    "PhaseStatus",
    "SetupPaths",
    "LoadOutcome",
    "LockDocument",
    "LockFileSaveError",
    "LockStore",
    "RepositoryRecord",
    "CacheAction",
    "CacheDecision",
    "CacheInvalidationRules",
    "InvalidationTrigger",
]
