#!/usr/bin/env python3
"""
Checksum Engine

Content fingerprints for single files and whole directory trees.

File checksums are SHA256 digests of the raw bytes. Directory checksums
combine every eligible file into "relative/path:hash" tokens, sort them,
and hash the joined result, so the digest does not depend on the order in
which the filesystem enumerates entries.
"""

import fnmatch
import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from multirepo.fingerprint.config import (
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_HASH_CHUNK_SIZE,
)


logger = logging.getLogger(__name__)

TOKEN_DELIMITER = "|"


class ExclusionMatcher:
    """
    Name-based exclusion predicate.

    A pattern containing ``*`` is a wildcard match; any other pattern matches
    the exact name or any name starting with it (``.git`` also excludes
    ``.gitignore`` and ``.github``).
    """

    def __init__(self, patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS):
        self.patterns = tuple(patterns)
        self._wildcards = tuple(p for p in self.patterns if "*" in p)
        self._prefixes = tuple(p for p in self.patterns if "*" not in p)

    def __call__(self, name: str) -> bool:
        if name.startswith(self._prefixes):
            return True
        return any(fnmatch.fnmatchcase(name, p) for p in self._wildcards)


@dataclass(frozen=True)
class TreeFile:
    """A file found during traversal."""

    relative_path: str  # always "/" separated
    path: Path


class ChecksumEngine:
    """
    Computes file and directory fingerprints.

    Read errors never propagate: an unreadable file has no checksum, and an
    unreadable file inside a directory is left out of the directory digest.
    """

    def __init__(
        self,
        exclude: Optional[Callable[[str], bool]] = None,
        chunk_size: int = DEFAULT_HASH_CHUNK_SIZE,
    ):
        """
        Initialize the engine.

        Args:
            exclude: Predicate on bare entry names (defaults to ExclusionMatcher())
            chunk_size: Bytes to read per chunk when hashing
        """
        self.exclude = exclude if exclude is not None else ExclusionMatcher()
        self.chunk_size = chunk_size

    def _hash_file(self, path: Path) -> str:
        """
        Hash file content in chunks.

        Raises:
            OSError: If file cannot be read
        """
        hasher = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(self.chunk_size), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    def file_checksum(self, path: Path) -> Optional[str]:
        """
        Compute the SHA256 checksum of a file.

        Args:
            path: File to hash

        Returns:
            Hex digest, or None if the file is missing or unreadable
        """
        path = Path(path)
        try:
            return self._hash_file(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to calculate checksum for {path}: {e}")
            return None

    def _list_dir(self, directory: str) -> list[os.DirEntry]:
        with os.scandir(directory) as it:
            return list(it)

    def iter_files(self, root: Path) -> Iterator[TreeFile]:
        """
        Walk a directory tree without recursion.

        Excluded names are pruned at every level, so an excluded directory
        is never entered wherever it occurs. Directory symlinks are not
        followed.

        Args:
            root: Directory to walk

        Yields:
            TreeFile for every eligible regular file
        """
        stack: list[tuple[str, str]] = [(str(root), "")]
        while stack:
            directory, prefix = stack.pop()
            try:
                entries = self._list_dir(directory)
            except OSError as e:
                logger.warning(f"Failed to traverse directory {directory}: {e}")
                continue

            for entry in entries:
                if self.exclude(entry.name):
                    continue
                relative = f"{prefix}{entry.name}"
                try:
                    if entry.is_dir(follow_symlinks=False):
                        stack.append((entry.path, f"{relative}/"))
                    elif entry.is_file():
                        yield TreeFile(relative_path=relative, path=Path(entry.path))
                except OSError:
                    logger.warning(
                        f"Skipping inaccessible path during traversal: {relative}"
                    )

    def directory_tokens(self, root: Path) -> list[str]:
        """
        Build the sorted "relative/path:hash" tokens for a directory.

        Unreadable files are logged and left out.
        """
        tokens: list[str] = []
        for tree_file in self.iter_files(root):
            try:
                file_hash = self._hash_file(tree_file.path)
            except OSError as e:
                logger.warning(
                    f"Skipping unreadable file during checksum: {tree_file.relative_path} ({e})"
                )
                continue
            tokens.append(f"{tree_file.relative_path}:{file_hash}")
        tokens.sort()
        return tokens

    def directory_checksum(self, path: Path) -> Optional[str]:
        """
        Compute a combined checksum for a directory tree.

        Args:
            path: Directory to fingerprint

        Returns:
            Hex digest, or None if the directory is missing or has no
            readable eligible files
        """
        path = Path(path)
        if not path.is_dir():
            return None

        tokens = self.directory_tokens(path)
        if not tokens:
            return None

        combined = TOKEN_DELIMITER.join(tokens)
        return hashlib.sha256(combined.encode("utf-8")).hexdigest()
