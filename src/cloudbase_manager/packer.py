from __future__ import annotations

import base64
import enum
import fnmatch
import logging
import os
import tempfile
import zipfile
from pathlib import Path
from typing import Iterable, Sequence


logger = logging.getLogger(__name__)

# Fixed entry timestamp so identical trees give identical archive bytes.
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


class CodeType(enum.Enum):
    FILE = "file"
    JAVA_FILE = "java_file"


def is_ignored(relative_path: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatchcase(relative_path, pattern) for pattern in patterns)


def collect_files(directory: Path, ignore: Sequence[str] = (), base: Path | None = None) -> list[tuple[Path, str]]:
    # A pattern matching a directory prunes everything beneath it.
    base = base or directory
    entries: list[tuple[Path, str]] = []
    for current, dirnames, filenames in os.walk(directory):
        current_path = Path(current)
        kept = []
        for dirname in dirnames:
            relative = (current_path / dirname).relative_to(base).as_posix()
            if not is_ignored(relative, ignore):
                kept.append(dirname)
        dirnames[:] = kept

        for filename in filenames:
            file_path = current_path / filename
            relative = file_path.relative_to(base).as_posix()
            if is_ignored(relative, ignore):
                continue
            entries.append((file_path, relative))
    entries.sort(key=lambda entry: entry[1])
    return entries


def write_archive(target: Path, entries: Iterable[tuple[Path, str]]) -> None:
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for file_path, arcname in entries:
            info = zipfile.ZipInfo(arcname, date_time=ZIP_EPOCH)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = ((file_path.stat().st_mode & 0o777) | 0o100000) << 16
            archive.writestr(info, file_path.read_bytes())


def zip_directory(
    directory: str | Path,
    ignore: Sequence[str] = (),
    *,
    prefix: str = "archive",
    temp_dir: str | Path | None = None,
) -> bytes:
    directory = Path(directory)
    entries = collect_files(directory, ignore)
    return _zip_entries(entries, prefix=prefix, temp_dir=temp_dir)


def _zip_entries(
    entries: Sequence[tuple[Path, str]],
    *,
    prefix: str,
    temp_dir: str | Path | None,
) -> bytes:
    handle, temp_name = tempfile.mkstemp(prefix=f"{prefix}-", suffix=".zip", dir=temp_dir)
    os.close(handle)
    temp_path = Path(temp_name)
    try:
        write_archive(temp_path, entries)
        return temp_path.read_bytes()
    finally:
        temp_path.unlink(missing_ok=True)


class FunctionPacker:
    def __init__(
        self,
        root: str | Path,
        name: str,
        ignore: Sequence[str] = (),
        incremental_path: str | None = None,
        temp_dir: str | Path | None = None,
    ) -> None:
        self.root = Path(root)
        self.name = name
        self.ignore = list(ignore)
        self.incremental_path = incremental_path
        self.temp_dir = temp_dir
        self.function_path = self.root / name

    def build(self, code_type: CodeType = CodeType.FILE) -> str | None:
        """Return the base64 artifact, or ``None`` when there is no source to pack."""
        if code_type is CodeType.JAVA_FILE:
            payload = self._java_file_code()
        else:
            payload = self._file_code()
        if payload is None:
            logger.debug("No source found for function %s under %s", self.name, self.root)
            return None
        return base64.b64encode(payload).decode("ascii")

    def _file_code(self) -> bytes | None:
        if self.incremental_path:
            target = self.function_path / self.incremental_path
            if target.is_file():
                relative = target.relative_to(self.function_path).as_posix()
                entries = [(target, relative)]
            elif target.is_dir():
                entries = collect_files(target, self.ignore, base=self.function_path)
            else:
                return None
        else:
            if not self.function_path.is_dir():
                return None
            entries = collect_files(self.function_path, self.ignore)

        return _zip_entries(entries, prefix=self.function_path.name, temp_dir=self.temp_dir)

    def _java_file_code(self) -> bytes | None:
        candidates = [
            self.function_path.with_name(f"{self.name}.jar"),
            self.function_path.with_name(f"{self.name}.zip"),
            self.function_path,
        ]
        if self.incremental_path:
            candidates.insert(0, self.function_path / self.incremental_path)
        for candidate in candidates:
            if candidate.is_file():
                return candidate.read_bytes()
        return None
