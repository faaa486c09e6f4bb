"""Pytest configuration for the multirepo cache test suite."""

from dataclasses import dataclass
from pathlib import Path

import pytest

from multirepo.fingerprint.config import SetupPaths
from multirepo.fingerprint.lockfile import LockStore
from multirepo.fingerprint.manager import CacheManager
from multirepo.options import CacheOptions
from multirepo.repos import RepositoryConfig, load_repositories


REPOS_YAML = """\
alpha:
  url: git@example.com:org/alpha.git
  traits: [nodejs, npm]
  preClone: prepare.py
  postClone: "npm run bootstrap"
beta:
  url: git@example.com:org/beta.git
  traits: npm
  postClone: setup.py
"""


def write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@dataclass
class Project:
    """A throwaway project tree with two repositories and two traits."""

    paths: SetupPaths

    @property
    def repos(self) -> dict[str, RepositoryConfig]:
        return {r.name: r for r in load_repositories(self.paths.config_file)}

    def repo_dir(self, name: str) -> Path:
        return self.paths.repository_dir(name)

    def write(self, relative: str, content: str) -> Path:
        return write(self.paths.root / relative, content)

    def manager(self, **options: bool) -> CacheManager:
        store = LockStore(self.paths.lock_file, self.paths)
        return CacheManager(store, CacheOptions(**options)).initialize()


@pytest.fixture
def project(tmp_path: Path) -> Project:
    paths = SetupPaths.from_root(tmp_path)
    write(paths.config_file, REPOS_YAML)

    for trait in ("nodejs", "npm"):
        write(paths.traits_root / trait / "preClone.py", f"# {trait} preClone\n")
        write(paths.traits_root / trait / "config.yaml", f"name: {trait}\n")
    write(paths.traits_root / "npm" / "postClone.py", "# npm postClone\n")

    write(paths.custom_root / "alpha" / "prepare.py", "print('prepare alpha')\n")
    write(paths.custom_root / "beta" / "setup.py", "print('setup beta')\n")

    alpha = paths.repository_dir("alpha")
    write(alpha / "index.js", "console.log('alpha');\n")
    write(alpha / "package.json", '{"name": "alpha"}\n')
    write(alpha / "node_modules" / "dep" / "index.js", "module.exports = 1;\n")

    beta = paths.repository_dir("beta")
    write(beta / "src" / "main.js", "console.log('beta');\n")
    write(beta / "package.json", '{"name": "beta", "version": "1.0.0"}\n')

    return Project(paths=paths)
