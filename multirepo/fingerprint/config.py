#!/usr/bin/env python3
"""
Centralized Setup Cache Configuration

This module provides the shared configuration for the setup cache used by
the multi-repository orchestrator. It defines:

1. Setup phases and the status values recorded for them
2. Default project locations (repository list, trait scripts, custom scripts)
3. The files and directories that never affect a repository fingerprint
4. The dependency manifests tracked per repository
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class Phase(Enum):
    """
    Setup phases that can be cached.

    The values double as hook script names (``preClone.py``) and as keys in
    the ``custom_scripts`` map of a repository record.
    """

    PRE_CLONE = "preClone"
    POST_CLONE = "postClone"

    @property
    def status_field(self) -> str:
        """Name of the RepositoryRecord field holding this phase's status."""
        return "pre_clone_status" if self is Phase.PRE_CLONE else "post_clone_status"

    @property
    def timestamp_field(self) -> str:
        """Name of the RepositoryRecord field holding this phase's timestamp."""
        if self is Phase.PRE_CLONE:
            return "pre_clone_timestamp"
        return "post_clone_timestamp"


class PhaseStatus(Enum):
    """Status values stored in the lock file. An absent status is ``None``."""

    SUCCESS = "success"
    FAILED = "failed"


# ==============================================================================
# Lock File Format
# ==============================================================================

LOCK_FORMAT_VERSION = "1.0.0"
DEFAULT_LOCK_FILENAME = "multirepo.lock"
DEFAULT_CONFIG_FILENAME = "repos.yaml"

# Phases whose trait scripts are refreshed after every update
ALL_PHASES: tuple[Phase, ...] = (Phase.PRE_CLONE, Phase.POST_CLONE)


# ==============================================================================
# Checksum Exclusions and Dependency Manifests
# ==============================================================================

# Matched against the bare entry name at every directory level:
# exact name, name prefix, or wildcard pattern.
DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (
    ".git",
    "node_modules",
    "vendor",
    ".idea",
    ".vscode",
    "dist",
    "build",
    "coverage",
    ".DS_Store",
    "Thumbs.db",
    "*.log",
    "*.tmp",
    ".env",
    ".cache",
)

# Checked by exact filename at the repository root
DEPENDENCY_FILES: tuple[str, ...] = (
    # Node.js
    "package.json",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    # PHP
    "composer.json",
    "composer.lock",
    # Python
    "requirements.txt",
    "Pipfile.lock",
    # Ruby
    "Gemfile.lock",
    # Go
    "go.mod",
    "go.sum",
)


# ==============================================================================
# Project Locations
# ==============================================================================


@dataclass(frozen=True)
class SetupPaths:
    """
    Locations of every file the setup cache reads or writes.

    Attributes:
        root: Project root (the directory holding the repository list)
        config_file: Master repository-list configuration (repos.yaml)
        traits_root: Directory holding one subdirectory per trait
        custom_root: Directory holding one subdirectory per repository
        packages_dir: Directory repositories are cloned into
        lock_file: Persisted lock document
        script_suffix: Suffix marking a hook value as a script file
        trait_config_name: Companion settings file inside each trait directory
    """

    root: Path
    config_file: Path
    traits_root: Path
    custom_root: Path
    packages_dir: Path
    lock_file: Path
    script_suffix: str = ".py"
    trait_config_name: str = "config.yaml"

    @classmethod
    def from_root(cls, root: Path, lock_file: Optional[Path] = None) -> "SetupPaths":
        """
        Build the conventional layout below a project root.

        Args:
            root: Project root directory
            lock_file: Optional lock file override (defaults to root/multirepo.lock)

        Returns:
            SetupPaths for the project
        """
        root = Path(root)
        return cls(
            root=root,
            config_file=root / DEFAULT_CONFIG_FILENAME,
            traits_root=root / "scripts" / "traits",
            custom_root=root / "scripts" / "custom",
            packages_dir=root / "packages",
            lock_file=lock_file if lock_file is not None else root / DEFAULT_LOCK_FILENAME,
        )

    def trait_script(self, trait: str, phase: Phase) -> Path:
        """Path of a trait's hook script for one phase."""
        return self.traits_root / trait / f"{phase.value}{self.script_suffix}"

    def trait_config(self, trait: str) -> Path:
        """Path of a trait's companion settings file."""
        return self.traits_root / trait / self.trait_config_name

    def trait_script_key(self, trait: str, phase: Phase) -> str:
        """Key under which a trait hook script hash is stored."""
        return f"{trait}/{phase.value}{self.script_suffix}"

    def trait_config_key(self, trait: str) -> str:
        """Key under which a trait settings file hash is stored."""
        return f"{trait}/{self.trait_config_name}"

    def custom_script(self, repo_name: str, filename: str) -> Path:
        """Path of a repository-specific custom hook script."""
        return self.custom_root / repo_name / filename

    def repository_dir(self, repo_name: str) -> Path:
        """Checkout directory of a repository."""
        return self.packages_dir / repo_name


# ==============================================================================
# Performance Tuning
# ==============================================================================

DEFAULT_HASH_CHUNK_SIZE = 8192  # Bytes to read per chunk when hashing files
DEFAULT_LOCK_TIMEOUT = 30.0  # Seconds to wait for the lock file writer lock
