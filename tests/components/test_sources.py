"""
Tests for the code discovery source.
"""

import os
from unittest.mock import patch

import pytest

from codepipe.components.sources import (
    CODE_EXTENSIONS,
    SKIP_DIRS,
    LocalCodeSource,
    read_source_file,
)
from codepipe.core.errors import ReadError, ScanError


@pytest.fixture
def code_tree(tmp_path):
    """A small repository with code files, noise directories and non-code files."""
    files = [
        "main.go",
        "README.md",
        "pkg/util.py",
        "pkg/deep/nested/app.js",
        "pkg/deep/nested/notes.txt",
        "web/index.html",
        "node_modules/lib/index.js",
        ".git/hooks/pre-commit.py",
        "build/out.go",
        "src/__pycache__/mod.py",
        "src/venv/site.py",
    ]
    for name in files:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("content\n")
    return tmp_path


def _relative(paths, root):
    return sorted(os.path.relpath(p, root) for p in paths)


def test_local_source_filters_extensions_and_skips_noise_dirs(code_tree):
    """Only allow-listed files outside deny-listed directories are returned."""
    source = LocalCodeSource(path=str(code_tree))
    files = source.discover()

    assert _relative(files, code_tree) == [
        "main.go",
        os.path.join("pkg", "deep", "nested", "app.js"),
        os.path.join("pkg", "util.py"),
        os.path.join("web", "index.html"),
    ]
    for path in files:
        assert os.path.splitext(path)[1] in CODE_EXTENSIONS
        parts = os.path.relpath(path, code_tree).split(os.sep)
        assert not SKIP_DIRS.intersection(parts)


def test_parallel_discovery_matches_serial(code_tree):
    """The concurrent walk finds exactly the same files as the serial walk."""
    serial = LocalCodeSource(path=str(code_tree)).discover()
    parallel = LocalCodeSource(path=str(code_tree), parallel=True, max_workers=2).discover()

    assert parallel == serial


def test_parallel_discovery_with_a_single_worker(code_tree):
    """With no spare capacity every subdirectory is walked inline."""
    files = LocalCodeSource(path=str(code_tree), parallel=True, max_workers=1).discover()

    assert len(files) == 4
    assert len(set(files)) == len(files)


def test_custom_extensions_and_skip_dirs(code_tree):
    source = LocalCodeSource(
        path=str(code_tree), extensions=[".txt", ".md"], skip_dirs=["pkg"]
    )

    assert _relative(source.discover(), code_tree) == ["README.md"]


@pytest.mark.parametrize("parallel", [False, True])
def test_missing_root_raises_scan_error(tmp_path, parallel):
    source = LocalCodeSource(path=str(tmp_path / "missing"), parallel=parallel)

    with pytest.raises(ScanError):
        source.discover()


@pytest.mark.parametrize("parallel", [False, True])
def test_unreadable_subdirectory_fails_the_whole_scan(code_tree, parallel):
    """A directory that cannot be listed aborts discovery; no partial result."""
    real_scandir = os.scandir
    blocked = str(code_tree / "pkg" / "deep")

    def scandir(path="."):
        if os.fspath(path) == blocked:
            raise PermissionError(13, "Permission denied", blocked)
        return real_scandir(path)

    source = LocalCodeSource(path=str(code_tree), parallel=parallel, max_workers=2)
    with patch("os.scandir", side_effect=scandir):
        with pytest.raises(ScanError):
            source.discover()


def test_test_connection(tmp_path):
    LocalCodeSource(path=str(tmp_path)).test_connection()

    with pytest.raises(FileNotFoundError):
        LocalCodeSource(path=str(tmp_path / "missing")).test_connection()


def test_read_source_file(tmp_path):
    path = tmp_path / "main.go"
    path.write_text("package main\n", encoding="utf-8")

    source_file = read_source_file(str(path))

    assert source_file.path == str(path)
    assert source_file.content == "package main\n"


def test_read_source_file_raises_read_error(tmp_path):
    missing = str(tmp_path / "missing.go")

    with pytest.raises(ReadError) as excinfo:
        read_source_file(missing)

    assert excinfo.value.path == missing
