#!/usr/bin/env python3
"""
Lock File State Store

Owns the persisted lock document: loads it, validates its shape and
version, recovers from corruption, and writes it back atomically.

The store follows a "load once, mutate in memory, save once" discipline.
Read-side problems (missing file, invalid JSON, wrong shape) never
propagate; they produce a fresh empty document and a RECOVERED or
INITIALIZED outcome. A failed save always raises LockFileSaveError.
"""

import dataclasses
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import fasteners

from multirepo.fingerprint.checksum import ChecksumEngine
from multirepo.fingerprint.config import (
    ALL_PHASES,
    DEFAULT_LOCK_TIMEOUT,
    LOCK_FORMAT_VERSION,
    Phase,
    PhaseStatus,
    SetupPaths,
)


logger = logging.getLogger(__name__)


class LockFileSaveError(RuntimeError):
    """The lock document could not be written to disk."""


class LockFileFormatError(ValueError):
    """The lock document on disk is structurally invalid."""


class LoadOutcome(Enum):
    """How the in-memory document was obtained."""

    LOADED = "loaded"  # Parsed from disk
    RECOVERED = "recovered"  # File existed but was unusable; replaced by empty
    INITIALIZED = "initialized"  # No file; started empty


def _now() -> str:
    return datetime.now().isoformat()


def _string_map(value: Any) -> dict[str, str]:
    """Keep only the str -> str entries of a mapping."""
    if not isinstance(value, dict):
        return {}
    return {k: v for k, v in value.items() if isinstance(k, str) and isinstance(v, str)}


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _status(value: Any) -> Optional[PhaseStatus]:
    # Unknown status values read as absent, which forces the phase to run
    try:
        return PhaseStatus(value)
    except ValueError:
        return None


# ==============================================================================
# Document Model
# ==============================================================================


@dataclass(frozen=True)
class RepositoryRecord:
    """
    Cached state for one repository.

    Records are values: updates replace the whole record. Use empty() for
    the default shape.
    """

    content_checksum: Optional[str] = None
    last_processed_at: Optional[str] = None
    traits: tuple[str, ...] = ()
    pre_clone_status: Optional[PhaseStatus] = None
    pre_clone_timestamp: Optional[str] = None
    post_clone_status: Optional[PhaseStatus] = None
    post_clone_timestamp: Optional[str] = None
    dependency_files: Mapping[str, str] = field(default_factory=dict)
    custom_scripts: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "RepositoryRecord":
        """The record every repository starts from."""
        return cls()

    def status(self, phase: Phase) -> Optional[PhaseStatus]:
        return getattr(self, phase.status_field)

    def timestamp(self, phase: Phase) -> Optional[str]:
        return getattr(self, phase.timestamp_field)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_checksum": self.content_checksum,
            "last_processed_at": self.last_processed_at,
            "traits": list(self.traits),
            "pre_clone_status": (
                self.pre_clone_status.value if self.pre_clone_status else None
            ),
            "pre_clone_timestamp": self.pre_clone_timestamp,
            "post_clone_status": (
                self.post_clone_status.value if self.post_clone_status else None
            ),
            "post_clone_timestamp": self.post_clone_timestamp,
            "dependency_files": dict(self.dependency_files),
            "custom_scripts": dict(self.custom_scripts),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RepositoryRecord":
        traits_raw = data.get("traits")
        traits = (
            tuple(t for t in traits_raw if isinstance(t, str))
            if isinstance(traits_raw, list)
            else ()
        )
        return cls(
            content_checksum=_optional_str(data.get("content_checksum")),
            last_processed_at=_optional_str(data.get("last_processed_at")),
            traits=traits,
            pre_clone_status=_status(data.get("pre_clone_status")),
            pre_clone_timestamp=_optional_str(data.get("pre_clone_timestamp")),
            post_clone_status=_status(data.get("post_clone_status")),
            post_clone_timestamp=_optional_str(data.get("post_clone_timestamp")),
            dependency_files=_string_map(data.get("dependency_files")),
            custom_scripts=_string_map(data.get("custom_scripts")),
        )


@dataclass
class GlobalChecksums:
    """Checksums of inputs shared by every repository."""

    config_file_hash: Optional[str] = None
    trait_script_hashes: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "config_file_hash": self.config_file_hash,
            "trait_script_hashes": dict(self.trait_script_hashes),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GlobalChecksums":
        return cls(
            config_file_hash=_optional_str(data.get("config_file_hash")),
            trait_script_hashes=_string_map(data.get("trait_script_hashes")),
        )


@dataclass
class LockDocument:
    """The whole persisted state of one project."""

    format_version: str = LOCK_FORMAT_VERSION
    generated_at: Optional[str] = None
    repositories: dict[str, RepositoryRecord] = field(default_factory=dict)
    global_checksums: GlobalChecksums = field(default_factory=GlobalChecksums)

    @classmethod
    def empty(cls) -> "LockDocument":
        return cls(generated_at=_now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "format_version": self.format_version,
            "generated_at": self.generated_at,
            "repositories": {
                name: record.to_dict() for name, record in self.repositories.items()
            },
            "global_checksums": self.global_checksums.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "LockDocument":
        """
        Build a document from parsed JSON.

        Raises:
            LockFileFormatError: If a required top-level field is missing or mistyped
        """
        errors = structural_errors(data)
        if errors:
            raise LockFileFormatError("; ".join(errors))

        version = data.get("format_version")
        return cls(
            format_version=version if isinstance(version, str) else str(version),
            generated_at=_optional_str(data.get("generated_at")),
            repositories={
                name: RepositoryRecord.from_dict(record)
                for name, record in data["repositories"].items()
            },
            global_checksums=GlobalChecksums.from_dict(data["global_checksums"]),
        )


def structural_errors(data: Any) -> list[str]:
    """
    Find shape problems that make parsed JSON unusable as a lock document.

    Args:
        data: Parsed JSON

    Returns:
        List of error messages (empty when the shape is usable)
    """
    if not isinstance(data, dict):
        return ["Lock file must contain a JSON object"]

    errors: list[str] = []
    repositories = data.get("repositories")
    if not isinstance(repositories, dict):
        errors.append("Invalid repositories structure")
    else:
        for name, record in repositories.items():
            if not isinstance(record, dict):
                errors.append(f"Invalid record for repository {name}")

    global_checksums = data.get("global_checksums")
    if not isinstance(global_checksums, dict):
        errors.append("Invalid global_checksums structure")
    elif not isinstance(global_checksums.get("trait_script_hashes"), dict):
        errors.append("Invalid trait_script_hashes structure in global_checksums")
    return errors


@dataclass(frozen=True)
class LoadResult:
    """Document returned by LockStore.load() and how it was obtained."""

    document: LockDocument
    outcome: LoadOutcome
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class IntegrityReport:
    valid: bool
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class LockStats:
    repository_count: int
    tracked_script_count: int
    last_generated: Optional[str]
    format_version: str
    file_size_bytes: int


def _atomic_write_json(path: Path, payload: Mapping[str, Any]) -> None:
    """Write JSON payload to path atomically (temp file + replace)."""
    fd, temp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
        text=True,
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, sort_keys=True)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


# ==============================================================================
# LockStore
# ==============================================================================


class LockStore:
    """
    Persistent lock document with typed accessors.

    The document is loaded lazily on first access. It is not safe for
    concurrent mutation; save() holds an inter-process writer lock so two
    processes never replace the file at the same time.
    """

    def __init__(
        self,
        lock_file_path: Path,
        paths: Optional[SetupPaths] = None,
        checksums: Optional[ChecksumEngine] = None,
    ):
        """
        Initialize the store.

        Args:
            lock_file_path: Path of the lock document (e.g. multirepo.lock)
            paths: Project layout used for config and trait checks
                (defaults to the layout around the lock file)
            checksums: Checksum engine (defaults to ChecksumEngine())
        """
        self.lock_file_path = Path(lock_file_path)
        self.paths = (
            paths
            if paths is not None
            else SetupPaths.from_root(
                self.lock_file_path.parent, lock_file=self.lock_file_path
            )
        )
        self.checksums = checksums if checksums is not None else ChecksumEngine()
        self.writer_lock_path = self.lock_file_path.parent / (
            f"{self.lock_file_path.name}.writer"
        )
        self._result: Optional[LoadResult] = None

    # --------------------------------------------------------------------------
    # Loading and validation
    # --------------------------------------------------------------------------

    @property
    def document(self) -> LockDocument:
        return self.load().document

    @property
    def load_outcome(self) -> Optional[LoadOutcome]:
        return self._result.outcome if self._result is not None else None

    def load(self) -> LoadResult:
        """
        Load the lock document, or start an empty one.

        Only the first call reads the disk; later calls return the same
        result until delete_lock_file() resets the store.

        Returns:
            LoadResult with the document and how it was obtained
        """
        if self._result is not None:
            return self._result

        try:
            with open(self.lock_file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            document = LockDocument.from_dict(data)
        except FileNotFoundError:
            logger.info("No existing lock file found - initialized new lock structure")
            self._result = LoadResult(LockDocument.empty(), LoadOutcome.INITIALIZED)
            return self._result
        except (ValueError, RecursionError, OSError) as e:
            # ValueError covers JSONDecodeError, UnicodeDecodeError,
            # LockFileFormatError and oversized integer literals
            logger.warning(f"Failed to load lock file {self.lock_file_path}: {e}")
            logger.warning("Creating fresh lock data structure for safe operation")
            self._result = LoadResult(
                LockDocument.empty(), LoadOutcome.RECOVERED, (str(e),)
            )
            return self._result

        self._result = LoadResult(document, LoadOutcome.LOADED)
        report = self.validate_integrity()
        if not report.valid:
            logger.warning(
                f"Lock file integrity issues detected: {', '.join(report.errors)}"
            )
            logger.warning("Proceeding with existing data but recommend regeneration")
            self._result = LoadResult(document, LoadOutcome.LOADED, report.errors)

        logger.info(
            f"Lock file loaded: {len(document.repositories)} repositories tracked"
        )
        return self._result

    def validate_integrity(self) -> IntegrityReport:
        """
        Check version, timestamp and shape of the in-memory document.

        Returns:
            IntegrityReport listing every problem found
        """
        document = self.document
        errors: list[str] = []

        if document.format_version != LOCK_FORMAT_VERSION:
            errors.append(f"Unsupported lock file version: {document.format_version}")

        if not document.generated_at:
            errors.append("Missing generated timestamp")

        if not isinstance(document.repositories, dict) or not all(
            isinstance(r, RepositoryRecord) for r in document.repositories.values()
        ):
            errors.append("Invalid repositories structure")

        if not isinstance(document.global_checksums, GlobalChecksums):
            errors.append("Invalid global_checksums structure")
        elif not isinstance(document.global_checksums.trait_script_hashes, dict):
            errors.append("Invalid trait_script_hashes structure in global_checksums")

        return IntegrityReport(valid=not errors, errors=tuple(errors))

    # --------------------------------------------------------------------------
    # Persistence
    # --------------------------------------------------------------------------

    def save(self) -> None:
        """
        Write the document to disk atomically.

        Raises:
            LockFileSaveError: If the document could not be written
        """
        document = self.document
        document.generated_at = _now()
        payload = document.to_dict()

        try:
            self.lock_file_path.parent.mkdir(parents=True, exist_ok=True)
            lock = fasteners.InterProcessLock(str(self.writer_lock_path))
            if not lock.acquire(timeout=DEFAULT_LOCK_TIMEOUT):
                raise LockFileSaveError(
                    f"Timed out waiting for writer lock {self.writer_lock_path}"
                )
            try:
                _atomic_write_json(self.lock_file_path, payload)
            finally:
                lock.release()
        except OSError as e:
            logger.error(f"Critical error saving lock file: {e}")
            raise LockFileSaveError(
                f"Failed to write lock file {self.lock_file_path}: {e}"
            ) from e

        logger.info(f"Lock file saved successfully: {self.lock_file_path}")

    def delete_lock_file(self) -> bool:
        """
        Remove the lock file and forget the in-memory document.

        Returns:
            True if a file was removed
        """
        self._result = None
        try:
            self.lock_file_path.unlink()
        except FileNotFoundError:
            logger.info("No lock file found to clear")
            return False
        logger.info(f"Lock file cleared: {self.lock_file_path}")
        return True

    # --------------------------------------------------------------------------
    # Repository records
    # --------------------------------------------------------------------------

    def get_repository_data(self, name: str) -> Optional[RepositoryRecord]:
        return self.document.repositories.get(name)

    def update_repository_data(
        self, name: str, partial: Mapping[str, Any]
    ) -> RepositoryRecord:
        """
        Merge fields into a repository record, creating it if needed.

        Each field in partial replaces the stored value; nested maps are
        not merged.

        Args:
            name: Repository name
            partial: RepositoryRecord field names to new values

        Returns:
            The stored record

        Raises:
            TypeError: If partial names a field RepositoryRecord does not have
        """
        repositories = self.document.repositories
        current = repositories.get(name) or RepositoryRecord.empty()
        updated = dataclasses.replace(
            current, **{**partial, "last_processed_at": _now()}
        )
        repositories[name] = updated
        logger.debug(f"Repository state updated: {name}")
        return updated

    def clear_repository_data(self, name: str) -> bool:
        """
        Delete a repository record.

        Returns:
            True if a record was removed
        """
        if self.document.repositories.pop(name, None) is None:
            return False
        logger.info(f"Cleared all cached data for repository: {name}")
        return True

    # --------------------------------------------------------------------------
    # Global checksums
    # --------------------------------------------------------------------------

    def update_global_checksums(self, partial: Mapping[str, Any]) -> None:
        """
        Merge fields into the global checksums.

        Raises:
            TypeError: If partial names a field GlobalChecksums does not have
        """
        document = self.document
        document.global_checksums = dataclasses.replace(
            document.global_checksums, **partial
        )
        document.generated_at = _now()
        logger.debug("Global checksums updated")

    def update_trait_script_checksums(
        self, traits: Iterable[str], phases: Iterable[Phase] = ALL_PHASES
    ) -> None:
        """
        Record hashes of trait hook scripts and settings files.

        Keys for files that are missing or unreadable are removed so they
        never match on the next check.

        Args:
            traits: Trait names
            phases: Phases whose hook scripts are recorded
        """
        traits = list(traits)
        phases = list(phases)
        hashes = self.document.global_checksums.trait_script_hashes

        def record(key: str, path: Path) -> None:
            digest = self.checksums.file_checksum(path)
            if digest is None:
                hashes.pop(key, None)
            else:
                hashes[key] = digest

        for trait in traits:
            for phase in phases:
                record(
                    self.paths.trait_script_key(trait, phase),
                    self.paths.trait_script(trait, phase),
                )
            record(self.paths.trait_config_key(trait), self.paths.trait_config(trait))

        if traits:
            logger.debug(f"Updated trait script checksums for {len(traits)} traits")

    # --------------------------------------------------------------------------
    # Change detection
    # --------------------------------------------------------------------------

    def has_file_changed(self, path: Path, stored_hash: Optional[str]) -> bool:
        """
        Compare a file against a stored hash.

        A missing file matches only a missing hash. A file that exists but
        cannot be read never matches.
        """
        current = self.checksums.file_checksum(path)
        if current is None:
            return stored_hash is not None or Path(path).exists()
        return current != stored_hash

    def has_config_file_changed(self) -> bool:
        changed = self.has_file_changed(
            self.paths.config_file, self.document.global_checksums.config_file_hash
        )
        if changed:
            logger.info(
                f"Main configuration file ({self.paths.config_file.name}) has changed"
            )
        return changed

    def has_repository_changed(self, name: str, repo_path: Path) -> bool:
        """
        Compare a repository's working tree with its stored checksum.

        A missing stored or current checksum always counts as changed.
        """
        record = self.get_repository_data(name)
        if record is None or record.content_checksum is None:
            logger.info(f"No previous checksum for {name} - treating as changed")
            return True

        current = self.checksums.directory_checksum(repo_path)
        if current is None or current != record.content_checksum:
            logger.info(f"Repository content change detected: {name}")
            return True
        return False

    def have_trait_scripts_changed(self, traits: Iterable[str], phase: Phase) -> bool:
        """
        Check the phase's hook script and the settings file of each trait.

        Stops at the first drifted file.
        """
        hashes = self.document.global_checksums.trait_script_hashes
        for trait in traits:
            script_key = self.paths.trait_script_key(trait, phase)
            if self.has_file_changed(
                self.paths.trait_script(trait, phase), hashes.get(script_key)
            ):
                logger.info(f"Trait script changed: {script_key}")
                return True

            config_key = self.paths.trait_config_key(trait)
            if self.has_file_changed(
                self.paths.trait_config(trait), hashes.get(config_key)
            ):
                logger.info(f"Trait configuration changed: {config_key}")
                return True
        return False

    # --------------------------------------------------------------------------
    # Reporting
    # --------------------------------------------------------------------------

    def get_stats(self) -> LockStats:
        document = self.document
        try:
            file_size = self.lock_file_path.stat().st_size
        except OSError:
            file_size = 0
        return LockStats(
            repository_count=len(document.repositories),
            tracked_script_count=len(document.global_checksums.trait_script_hashes),
            last_generated=document.generated_at,
            format_version=document.format_version,
            file_size_bytes=file_size,
        )
