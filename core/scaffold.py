"""
core/scaffold.py -- Copy this template into a new project directory.

The scaffolder never overwrites: if the target exists, it refuses. After
copying it renames the project in pyproject.toml, fills in description and
author, and writes a .env with a freshly generated SECRET_KEY so the new
project starts in production mode without a shared secret. The CLI and its
tests travel with the copy, so the new project can sweep sessions, serve
itself and spawn further projects under its own script name.

Usage:
    target = scaffold_project("acme-portal", Path.cwd(), description="...", author="Jane")
"""

import logging
import re
import secrets
import shutil
import subprocess
from pathlib import Path
from typing import Optional

logger = logging.getLogger("starterkit.scaffold")

TEMPLATE_ROOT = Path(__file__).resolve().parent.parent

_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._-]{0,99}$")
_BARE_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# Build artefacts, local state and secrets never travel into a new project.
_IGNORED = (
    ".git",
    ".venv",
    "venv",
    "__pycache__",
    ".pytest_cache",
    "*.egg-info",
    "data",
    ".env",
    "*.db",
    "*.db-wal",
    "*.db-shm",
)


class ScaffoldError(Exception):
    """Raised when a project cannot be created. Message is user-facing."""


def _toml_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _rewrite_pyproject(path: Path, name: str, description: str, author: str) -> None:
    if not path.is_file():
        logger.warning("No pyproject.toml in template; skipping metadata rewrite")
        return
    content = path.read_text(encoding="utf-8")
    content = re.sub(r'^name = ".*"$', f"name = {_toml_string(name)}", content, count=1, flags=re.M)
    content = re.sub(r'^version = ".*"$', 'version = "1.0.0"', content, count=1, flags=re.M)
    content = re.sub(
        r"^description = .*$", f"description = {_toml_string(description)}", content, count=1, flags=re.M
    )
    authors = f"authors = [{{ name = {_toml_string(author)} }}]" if author else "authors = []"
    content = re.sub(r"^authors = .*$", authors, content, count=1, flags=re.M)
    # The CLI (new/sweep/serve) travels with the project under the project's own name.
    script = name if _BARE_KEY_RE.match(name) else _toml_string(name)
    content = re.sub(
        r"^\[project\.scripts\]\n(?:.+\n)*",
        f'[project.scripts]\n{script} = "main:main"\n',
        content,
        count=1,
        flags=re.M,
    )
    path.write_text(content, encoding="utf-8")


def _write_env(target: Path, name: str) -> None:
    env = (
        f"SECRET_KEY={secrets.token_hex(32)}\n"
        "DEBUG=false\n"
        f"DATABASE_URL=sqlite:///data/{name}.db\n"
        "SECURE_COOKIES=true\n"
    )
    env_path = target / ".env"
    env_path.write_text(env, encoding="utf-8")
    env_path.chmod(0o600)


def _git_init(target: Path) -> bool:
    git = shutil.which("git")
    if git is None:
        logger.warning("git not found on PATH; skipping repository init")
        return False
    subprocess.run([git, "init", "--quiet"], cwd=target, check=True)  # noqa: S603
    return True


def scaffold_project(
    name: str,
    dest: Path,
    description: str = "",
    author: str = "",
    init_git: bool = False,
    template_root: Optional[Path] = None,
) -> Path:
    """Create `dest/name` from the template and return its path.

    Raises ScaffoldError for an invalid name, an existing target, or a
    target that would sit inside the template itself.
    """
    if not _NAME_RE.match(name):
        raise ScaffoldError(
            f"'{name}' is not a valid project name. Use letters, digits, '.', '_' or '-', starting with a letter."
        )
    source = (template_root or TEMPLATE_ROOT).resolve()
    target = (dest / name).resolve()
    if target.exists():
        raise ScaffoldError(f"Directory {target} already exists!")
    if target.is_relative_to(source):
        raise ScaffoldError("Target directory must be outside the template directory.")

    shutil.copytree(source, target, ignore=shutil.ignore_patterns(*_IGNORED))
    _rewrite_pyproject(target / "pyproject.toml", name, description, author)
    _write_env(target, name)
    if init_git:
        _git_init(target)
    logger.info("Scaffolded %s from %s", target, source)
    return target
