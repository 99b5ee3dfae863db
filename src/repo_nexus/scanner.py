"""Local repository discovery - walks a directory tree looking for git roots.

Each repository root yields one RepositoryRecord carrying a forensic
signature: detected manifest files, dependency names and a build-system
guess, all read from disk without executing anything.
"""

from __future__ import annotations

import datetime
import hashlib
import json
import os
from pathlib import Path

from .errors import ScanIOError
from .logging import get_logger
from .records import (
    MAX_SIGNATURE_DEPENDENCIES,
    SOURCE_LOCAL,
    ForensicSignature,
    RepositoryRecord,
)

logger = get_logger("scanner")

VCS_MARKER = ".git"
HIDDEN_PREFIX = "."

# Dependency-install caches and build output; never contain repositories
NOISE_DIRS = {
    "node_modules", "__pycache__", "venv", "env", "site-packages",
    "target", "build", "dist", "out", "vendor", "Pods",
    "DerivedData", "coverage", "htmlcov", "bower_components",
}

README_NAMES = ("README.md", "readme.md", "README.rst", "README.txt", "README")
DESCRIPTION_LIMIT = 160
README_LIMIT = 20000

PRIMARY_MANIFEST = "package.json"
PRIMARY_LANGUAGE = "JavaScript/TypeScript"
PRIMARY_BUILD_SYSTEM = "npm"

# filename -> (language, build system); empty strings leave the field alone
SECONDARY_MANIFESTS = {
    "requirements.txt": ("Python", "pip"),
    "pyproject.toml": ("Python", "pyproject"),
    "setup.py": ("Python", "setuptools"),
    "Pipfile": ("Python", "pipenv"),
    "Cargo.toml": ("Rust", "cargo"),
    "go.mod": ("Go", "go modules"),
    "Gemfile": ("Ruby", "bundler"),
    "pom.xml": ("Java", "maven"),
    "build.gradle": ("Java", "gradle"),
    "build.gradle.kts": ("Kotlin", "gradle"),
    "composer.json": ("PHP", "composer"),
    "Package.swift": ("Swift", "swift package manager"),
    "CMakeLists.txt": ("C/C++", "cmake"),
    "Makefile": ("", "make"),
    "tsconfig.json": ("TypeScript", ""),
}

CONTAINER_DESCRIPTORS = (
    "Dockerfile", "docker-compose.yml", "docker-compose.yaml",
    "compose.yml", "compose.yaml",
)


def is_noise_dir(name: str) -> bool:
    """True for directories the scan never descends into."""
    return name.startswith(HIDDEN_PREFIX) or name in NOISE_DIRS


def local_repo_id(local_path: str) -> str:
    """Stable id for a local record, derived from its resolved directory."""
    digest = hashlib.sha1(local_path.encode("utf-8")).hexdigest()[:12]
    return f"local-{digest}"


class ForensicScanner:
    """Recursively discovers git repositories below a root directory."""

    def scan(self, root: str | Path, path: str = "") -> list[RepositoryRecord]:
        """Return one record per repository root found under ``root``.

        ``path`` is the display path of ``root`` relative to the directory the
        user picked. Repositories below the root are named relative to it; a
        root that is itself a repository is named after its directory.
        """
        root = Path(root).expanduser()
        if not root.is_dir():
            raise ScanIOError(f"Not a directory: {root}")
        return self._scan_dir(root, path)

    def _scan_dir(self, directory: Path, path: str) -> list[RepositoryRecord]:
        if os.path.isdir(directory / VCS_MARKER):
            # A repository is a leaf: nested repositories are not discovered
            try:
                return [self._extract_record(directory, path or directory.resolve().name)]
            except OSError as e:
                logger.warning("Skipping unreadable repository %s: %s", directory, e)
                return []

        try:
            with os.scandir(directory) as entries:
                children = sorted(
                    entry.name
                    for entry in entries
                    if entry.is_dir(follow_symlinks=False) and not is_noise_dir(entry.name)
                )
        except OSError as e:
            logger.warning("Skipping unreadable directory %s: %s", directory, e)
            return []

        records: list[RepositoryRecord] = []
        for name in children:
            records.extend(self._scan_dir(directory / name, f"{path}/{name}" if path else name))
        return records

    def _extract_record(self, directory: Path, path: str) -> RepositoryRecord:
        logger.debug("Repository root at %s", directory)
        full_name = f"local/{path}"
        local_path = str(directory.resolve())
        readme = _read_readme(directory)
        description = _description_from_readme(readme)
        language = "Unknown"
        build_system = ""
        detected: set[str] = set()
        dependencies: list[str] = []
        has_container = False

        pkg = _read_package_json(directory / PRIMARY_MANIFEST)
        if pkg is not None:
            detected.add(PRIMARY_MANIFEST)
            build_system = PRIMARY_BUILD_SYSTEM
            language = PRIMARY_LANGUAGE
            if not description and isinstance(pkg.get("description"), str):
                description = pkg["description"][:DESCRIPTION_LIMIT]
            for key in ("dependencies", "devDependencies"):
                deps = pkg.get(key)
                if isinstance(deps, dict):
                    dependencies.extend(d for d in deps if d not in dependencies)
            dependencies = dependencies[:MAX_SIGNATURE_DEPENDENCIES]

        for fname, (lang, build) in SECONDARY_MANIFESTS.items():
            if (directory / fname).is_file():
                detected.add(fname)
                if lang:
                    language = lang
                if build and not build_system:
                    build_system = build

        for fname in CONTAINER_DESCRIPTORS:
            if (directory / fname).is_file():
                detected.add(fname)
                has_container = True

        return RepositoryRecord(
            id=local_repo_id(local_path),
            full_name=full_name,
            name=directory.name,
            description=description or "Local repository",
            language=language,
            private=True,
            updated_at=_modified_at(directory),
            default_branch="main",
            source_type=SOURCE_LOCAL,
            local_path=local_path,
            readme_content=readme,
            forensic_signature=ForensicSignature(
                detected_files=frozenset(detected),
                dependencies=tuple(dependencies),
                build_system=build_system,
                has_container_descriptor=has_container,
            ),
        )


def find_readme(directory: Path) -> Path | None:
    for fname in README_NAMES:
        candidate = directory / fname
        if candidate.is_file():
            return candidate
    return None


def _read_readme(directory: Path) -> str:
    readme = find_readme(directory)
    if readme is None:
        return ""
    try:
        return readme.read_text(errors="replace")[:README_LIMIT]
    except OSError as e:
        logger.warning("Could not read %s: %s", readme, e)
        return ""


def _description_from_readme(readme: str) -> str:
    for line in readme.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            return stripped[:DESCRIPTION_LIMIT]
    return ""


def _read_package_json(manifest: Path) -> dict | None:
    if not manifest.is_file():
        return None
    try:
        pkg = json.loads(manifest.read_text(errors="replace"))
    except (OSError, json.JSONDecodeError, ValueError) as e:
        logger.warning("Ignoring unreadable %s: %s", manifest, e)
        return None
    return pkg if isinstance(pkg, dict) else None


def _modified_at(directory: Path) -> str:
    try:
        mtime = directory.stat().st_mtime
    except OSError:
        return datetime.datetime.now(datetime.timezone.utc).isoformat()
    return datetime.datetime.fromtimestamp(mtime, datetime.timezone.utc).isoformat()
