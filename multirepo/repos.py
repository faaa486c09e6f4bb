#!/usr/bin/env python3
"""
Repository list loading.

Parses the master repository-list file (repos.yaml):

    frontend:
      url: git@example.com:org/frontend.git
      traits: [nodejs, npm]
      postClone: setup.py
    api:
      url: git@example.com:org/api.git
      traits: php
      preClone: "composer --version"

A hook value ending in the script suffix names a script file under the
repository's custom script directory; any other value is an inline shell
command. The distinction is made once, here.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from multirepo.fingerprint.config import Phase


logger = logging.getLogger(__name__)


class RepositoryConfigError(ValueError):
    """The repository list could not be read or has an invalid shape."""


@dataclass(frozen=True)
class InlineCommand:
    """Hook value run as a shell command. Never checksummed."""

    command: str


@dataclass(frozen=True)
class ScriptFile:
    """Hook value naming a script in the repository's custom script directory."""

    filename: str


HookValue = Union[InlineCommand, ScriptFile]


def parse_hook_value(value: Optional[str], script_suffix: str = ".py") -> Optional[HookValue]:
    """
    Classify a raw hook value.

    Args:
        value: Raw value from the repository list
        script_suffix: Suffix marking a script file

    Returns:
        ScriptFile, InlineCommand, or None for an empty value
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if value.endswith(script_suffix):
        return ScriptFile(value)
    return InlineCommand(value)


@dataclass(frozen=True)
class RepositoryConfig:
    """One entry of the repository list."""

    name: str
    url: Optional[str] = None
    traits: tuple[str, ...] = ()
    pre_clone: Optional[HookValue] = None
    post_clone: Optional[HookValue] = None

    def hook(self, phase: Phase) -> Optional[HookValue]:
        return self.pre_clone if phase is Phase.PRE_CLONE else self.post_clone

    def script_hook(self, phase: Phase) -> Optional[ScriptFile]:
        """The phase's hook if it is a script file, else None."""
        hook = self.hook(phase)
        return hook if isinstance(hook, ScriptFile) else None


def _parse_traits(name: str, raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if isinstance(raw, list) and all(isinstance(t, str) for t in raw):
        return tuple(raw)
    raise RepositoryConfigError(f"Repository '{name}' has invalid traits: {raw!r}")


def parse_repositories(data: Any, script_suffix: str = ".py") -> list[RepositoryConfig]:
    """
    Build repository configs from parsed YAML.

    Raises:
        RepositoryConfigError: If the structure is invalid
    """
    if data is None:
        return []
    if not isinstance(data, dict):
        raise RepositoryConfigError("Repository list must be a mapping of name to settings")

    repos: list[RepositoryConfig] = []
    for name, settings in data.items():
        name = str(name)
        if settings is None:
            settings = {}
        if not isinstance(settings, dict):
            raise RepositoryConfigError(f"Repository '{name}' settings must be a mapping")
        url = settings.get("url")
        repos.append(
            RepositoryConfig(
                name=name,
                url=str(url) if url is not None else None,
                traits=_parse_traits(name, settings.get("traits")),
                pre_clone=parse_hook_value(settings.get("preClone"), script_suffix),
                post_clone=parse_hook_value(settings.get("postClone"), script_suffix),
            )
        )
    return repos


def load_repositories(path: Path, script_suffix: str = ".py") -> list[RepositoryConfig]:
    """
    Load the repository list file.

    Args:
        path: repos.yaml path
        script_suffix: Suffix marking a hook value as a script file

    Returns:
        Repository configs in file order

    Raises:
        RepositoryConfigError: If the file is missing, unparsable or invalid
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise RepositoryConfigError(f"Failed to read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise RepositoryConfigError(f"Failed to parse {path}: {e}") from e

    repos = parse_repositories(data, script_suffix)
    logger.info(f"Loaded {len(repos)} repositories from {path}")
    return repos
