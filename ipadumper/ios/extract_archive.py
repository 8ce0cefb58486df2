#!/usr/bin/env python3
"""Unpack an IPA into a working directory next to it."""
from __future__ import annotations

import argparse
import os
import shutil
import stat
import sys
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from ipadumper.shared.errors import DumperError, ExtractionError, InputValidationError

console = Console()

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644
CHUNK_SIZE = 1024 * 1024


@dataclass
class ExtractionResult:
    target: Path
    entries: int = 0
    manifests: list[Path] = field(default_factory=list)

    @property
    def manifest_found(self) -> bool:
        return bool(self.manifests)


def default_output(package: Path) -> Path:
    return package.with_suffix("")


def prepare_workspace(package: Path, output: Path | None = None, suffix: str = ".ipa") -> Path:
    """Create the working directory and drop a ``.zip`` copy of the package in it.

    All checks run before anything is written; an existing destination is
    never reused.
    """
    if not package.name.endswith(suffix):
        raise InputValidationError(f"The specified file does not have an '{suffix}' extension: {package}")
    if not package.is_file():
        raise InputValidationError(f"The specified file does not exist: {package}")
    target = output or default_output(package)
    if target.exists():
        raise InputValidationError(f"Destination already exists: {target}")

    try:
        target.mkdir(parents=True)
        zip_path = target / f"{package.stem}.zip"
        shutil.copyfile(package, zip_path)
    except OSError as exc:
        raise ExtractionError(f"Error copying {package} into {target}: {exc}") from exc
    console.print(f"[green]File successfully copied and renamed to: {escape(str(zip_path))}")
    return zip_path


def entry_mode(info: zipfile.ZipInfo) -> int:
    mode = stat.S_IMODE(info.external_attr >> 16)
    if mode:
        return mode
    return DEFAULT_DIR_MODE if info.is_dir() else DEFAULT_FILE_MODE


def resolve_entry(root: Path, name: str) -> Path:
    path = (root / name).resolve()
    if os.path.isabs(name) or not path.is_relative_to(root):
        raise ExtractionError(f"Entry {name!r} escapes destination {root}")
    return path


def write_entry(archive: zipfile.ZipFile, info: zipfile.ZipInfo, path: Path) -> None:
    mode = entry_mode(info)
    if info.is_dir():
        path.mkdir(parents=True, exist_ok=True)
        path.chmod(mode)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with archive.open(info) as src, path.open("wb") as dst:
        shutil.copyfileobj(src, dst, CHUNK_SIZE)
    path.chmod(mode)


def unzip(zip_path: Path, target: Path, manifest_name: str = "Info.plist") -> ExtractionResult:
    """Extract every entry of ``zip_path`` under ``target``.

    Paths ending in ``manifest_name`` are collected on the result. Not finding
    one is reported, not raised. A failure part way leaves what was already
    written on disk.
    """
    root = target.resolve()
    result = ExtractionResult(target=target)
    try:
        archive = zipfile.ZipFile(zip_path)
    except (OSError, zipfile.BadZipFile) as exc:
        raise ExtractionError(f"Error opening {zip_path}: {exc}") from exc

    with archive:
        for info in archive.infolist():
            path = resolve_entry(root, info.filename)
            if info.filename.rstrip("/").endswith(manifest_name):
                found = target / info.filename
                result.manifests.append(found)
                console.print(f"[green]{escape(manifest_name)} found at: {escape(str(found))}")
            try:
                write_entry(archive, info, path)
            except (OSError, zipfile.BadZipFile, EOFError) as exc:
                raise ExtractionError(f"Error extracting {info.filename} to {path}: {exc}") from exc
            result.entries += 1

    if not result.manifest_found:
        console.print(f"[red]{escape(manifest_name)} not found within the zip file.")
    return result


def find_manifests(target: Path, manifest_name: str = "Info.plist") -> list[Path]:
    return sorted(target.glob(f"Payload/*.app/{manifest_name}"))


def find_app_dirs(target: Path) -> list[Path]:
    return sorted(path for path in target.glob("Payload/*.app") if path.is_dir())


def main() -> None:
    parser = argparse.ArgumentParser(description="Unpack an IPA next to itself")
    parser.add_argument("package", type=Path, help="Path to the .ipa file")
    parser.add_argument("--output", type=Path, help="Working directory (default: package path without extension)")
    args = parser.parse_args()

    zip_path = prepare_workspace(args.package, args.output)
    result = unzip(zip_path, zip_path.parent)
    console.print(f"Extracted {result.entries} entries into {escape(str(result.target))}")


if __name__ == "__main__":
    try:
        main()
    except DumperError as exc:
        console.print(f"[bold red]{escape(str(exc))}")
        sys.exit(1)
