"""Tests for local repository discovery."""

import json
import os

import pytest

from repo_nexus.errors import ScanIOError
from repo_nexus.records import SOURCE_LOCAL
from repo_nexus.scanner import ForensicScanner, local_repo_id


def make_repo(path, files=None):
    """Create a directory with a .git marker and the given files."""
    (path / ".git").mkdir(parents=True)
    for name, content in (files or {}).items():
        (path / name).write_text(content)
    return path


@pytest.fixture
def workspace(tmp_path):
    """A folder of projects: a node app, a python tool and an empty dir."""
    root = tmp_path / "code"
    make_repo(
        root / "webapp",
        {
            "README.md": "# WebApp\n\nNext.js dashboard for invoices\n\nMore text.\n",
            "package.json": json.dumps({
                "name": "webapp",
                "description": "From package.json",
                "dependencies": {"next": "^14", "react": "^18"},
                "devDependencies": {"vitest": "^1", "typescript": "^5"},
            }),
            "Dockerfile": "FROM node:20\n",
        },
    )
    make_repo(
        root / "tools" / "cli",
        {"requirements.txt": "click\n", "README.md": "# CLI\nSmall helper tool\n"},
    )
    (root / "empty").mkdir()
    return root


class TestForensicScanner:
    """Test ForensicScanner.scan()."""

    def test_finds_every_repository(self, workspace):
        records = ForensicScanner().scan(workspace)
        names = sorted(r.full_name for r in records)
        assert names == ["local/tools/cli", "local/webapp"]

    def test_node_signature(self, workspace):
        records = {r.name: r for r in ForensicScanner().scan(workspace)}
        web = records["webapp"]
        sig = web.forensic_signature

        assert web.source_type == SOURCE_LOCAL
        assert web.private is True
        assert web.language == "JavaScript/TypeScript"
        assert web.description == "Next.js dashboard for invoices"
        assert web.local_path == str((workspace / "webapp").resolve())
        assert "Next.js dashboard" in web.readme_content
        assert sig.build_system == "npm"
        assert sig.dependencies == ("next", "react", "vitest", "typescript")
        assert {"package.json", "Dockerfile"} <= sig.detected_files
        assert sig.has_container_descriptor is True

    def test_secondary_manifest_sets_language(self, workspace):
        records = {r.name: r for r in ForensicScanner().scan(workspace)}
        cli = records["cli"]
        assert cli.language == "Python"
        assert cli.forensic_signature.build_system == "pip"
        assert cli.forensic_signature.detected_files == frozenset({"requirements.txt"})
        assert cli.forensic_signature.has_container_descriptor is False

    def test_dependencies_truncated_to_fifteen(self, tmp_path):
        deps = {f"dep{i:02d}": "1" for i in range(12)}
        dev = {f"dev{i:02d}": "1" for i in range(12)}
        make_repo(
            tmp_path / "big",
            {"package.json": json.dumps({"dependencies": deps, "devDependencies": dev})},
        )
        [record] = ForensicScanner().scan(tmp_path / "big")
        sig = record.forensic_signature
        assert len(sig.dependencies) == 15
        assert sig.dependencies[:12] == tuple(deps)
        assert sig.dependencies[12:] == ("dev00", "dev01", "dev02")

    def test_description_skips_headings_and_truncates(self, tmp_path):
        long_line = "word " * 60
        make_repo(tmp_path / "r", {"README.md": f"# Title\n\n## Sub\n{long_line}\n"})
        [record] = ForensicScanner().scan(tmp_path / "r")
        assert record.description == long_line.strip()[:160]
        assert len(record.description) == 160

    def test_package_description_fallback(self, tmp_path):
        make_repo(tmp_path / "r", {"package.json": json.dumps({"description": "Pkg desc"})})
        [record] = ForensicScanner().scan(tmp_path / "r")
        assert record.description == "Pkg desc"

    def test_bare_repository_defaults(self, tmp_path):
        make_repo(tmp_path / "bare")
        [record] = ForensicScanner().scan(tmp_path / "bare")
        assert record.description == "Local repository"
        assert record.language == "Unknown"
        assert record.forensic_signature.detected_files == frozenset()
        assert record.default_branch == "main"

    def test_invalid_package_json_ignored(self, tmp_path):
        make_repo(tmp_path / "r", {"package.json": "{broken"})
        [record] = ForensicScanner().scan(tmp_path / "r")
        assert record.language == "Unknown"
        assert "package.json" not in record.forensic_signature.detected_files

    def test_repository_is_a_leaf(self, tmp_path):
        # root/a/repo has .git at depth 2, root/a/repo/x/nested at depth 4
        repo = make_repo(tmp_path / "a" / "repo")
        make_repo(repo / "x" / "nested")
        records = ForensicScanner().scan(tmp_path, path="root")
        assert [r.full_name for r in records] == ["local/root/a/repo"]

    def test_noise_and_hidden_dirs_skipped(self, tmp_path):
        make_repo(tmp_path / "node_modules" / "some-pkg")
        make_repo(tmp_path / ".cache" / "thing")
        assert ForensicScanner().scan(tmp_path) == []

    def test_root_that_is_a_repository(self, tmp_path):
        make_repo(tmp_path / "solo")
        records = ForensicScanner().scan(tmp_path / "solo")
        assert [r.full_name for r in records] == ["local/solo"]

    def test_ids_stable_across_rescans(self, workspace):
        first = ForensicScanner().scan(workspace)
        second = ForensicScanner().scan(workspace)
        assert [r.id for r in first] == [r.id for r in second]
        assert first[0].id == local_repo_id(first[0].local_path)
        assert len({r.id for r in first}) == len(first)

    def test_not_a_directory(self, tmp_path):
        with pytest.raises(ScanIOError, match="Not a directory"):
            ForensicScanner().scan(tmp_path / "missing")

    def test_ids_follow_the_directory_not_the_root(self, workspace):
        from_parent = {r.local_path: r for r in ForensicScanner().scan(workspace)}
        [from_child] = ForensicScanner().scan(workspace / "tools")

        assert from_child.full_name == "local/cli"
        assert from_parent[from_child.local_path].full_name == "local/tools/cli"
        assert from_parent[from_child.local_path].id == from_child.id

    def test_unreadable_subtree_skipped(self, workspace, monkeypatch):
        locked = workspace / "locked"
        make_repo(locked / "hidden-repo")
        real_scandir = os.scandir

        def scandir(path):
            if os.path.basename(path) == "locked":
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        monkeypatch.setattr("repo_nexus.scanner.os.scandir", scandir)

        records = ForensicScanner().scan(workspace)

        assert sorted(r.name for r in records) == ["cli", "webapp"]
