from __future__ import annotations

import base64
import io
import zipfile
from pathlib import Path

import pytest

from cloudbase_manager import packer as packer_module
from cloudbase_manager.packer import CodeType, FunctionPacker, zip_directory


def _write(path: Path, content: str = "x") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _names(artifact: str) -> list[str]:
    with zipfile.ZipFile(io.BytesIO(base64.b64decode(artifact))) as archive:
        return archive.namelist()


@pytest.fixture
def function_root(tmp_path: Path) -> Path:
    root = tmp_path / "functions"
    _write(root / "hello" / "index.js", "exports.main = () => 1")
    _write(root / "hello" / "lib" / "util.js", "module.exports = {}")
    _write(root / "hello" / "package.json", "{}")
    _write(root / "hello" / "node_modules" / "dep" / "index.js", "dep")
    _write(root / "hello" / "debug.log", "log")
    return root


def test_entries_are_sorted_by_relative_path(function_root: Path, tmp_path: Path) -> None:
    artifact = FunctionPacker(function_root, "hello", temp_dir=tmp_path).build()

    names = _names(artifact)
    assert names == sorted(names)
    assert "lib/util.js" in names
    assert "index.js" in names


def test_same_tree_gives_identical_artifacts(function_root: Path) -> None:
    first = FunctionPacker(function_root, "hello", ["*.log"]).build()
    second = FunctionPacker(function_root, "hello", ["*.log"]).build()

    assert first == second


def test_ignored_files_and_directory_subtrees_are_excluded(function_root: Path) -> None:
    artifact = FunctionPacker(function_root, "hello", ["node_modules", "*.log"]).build()

    names = _names(artifact)
    assert not any(name.startswith("node_modules/") for name in names)
    assert "debug.log" not in names
    assert names == ["index.js", "lib/util.js", "package.json"]


def test_missing_source_returns_none(tmp_path: Path) -> None:
    assert FunctionPacker(tmp_path, "absent").build() is None
    assert FunctionPacker(tmp_path, "absent").build(CodeType.JAVA_FILE) is None


def test_temp_archive_is_removed_after_build(function_root: Path, tmp_path: Path) -> None:
    scratch = tmp_path / "scratch"
    scratch.mkdir()

    FunctionPacker(function_root, "hello", temp_dir=scratch).build()

    assert list(scratch.iterdir()) == []


def test_temp_archive_is_removed_when_compression_fails(
    function_root: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    scratch = tmp_path / "scratch"
    scratch.mkdir()

    def broken_write(target, entries):
        Path(target).write_bytes(b"partial")
        raise OSError("disk full")

    monkeypatch.setattr(packer_module, "write_archive", broken_write)

    with pytest.raises(OSError):
        FunctionPacker(function_root, "hello", temp_dir=scratch).build()
    assert list(scratch.iterdir()) == []


def test_incremental_single_file_keeps_its_relative_name(function_root: Path) -> None:
    artifact = FunctionPacker(function_root, "hello", incremental_path="lib/util.js").build()

    assert _names(artifact) == ["lib/util.js"]


def test_incremental_directory_is_packed_relative_to_function(function_root: Path) -> None:
    artifact = FunctionPacker(function_root, "hello", incremental_path="lib").build()

    assert _names(artifact) == ["lib/util.js"]


def test_java_mode_reads_the_prebuilt_artifact_verbatim(tmp_path: Path) -> None:
    jar = tmp_path / "worker.jar"
    jar.write_bytes(b"PK-jar-bytes")

    artifact = FunctionPacker(tmp_path, "worker", ["*.jar"]).build(CodeType.JAVA_FILE)

    assert base64.b64decode(artifact) == b"PK-jar-bytes"


def test_zip_directory_returns_archive_bytes(function_root: Path) -> None:
    data = zip_directory(function_root / "hello", ["node_modules"], prefix="layer")

    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        assert "index.js" in archive.namelist()
        assert archive.read("package.json") == b"{}"
