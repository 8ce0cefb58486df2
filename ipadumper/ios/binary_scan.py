"""Pull informative strings out of an app bundle's main executable.

Two passes run against the same binary:

* the binary inspector is asked for strings matching the property-list
  marker, and each occurrence of the link marker (``applinks:`` by default)
  is split out so it can be shown distinctly;
* raw strings containing a slash are filtered against the exclusion list and
  classified as path-like (``/a/b``) or not.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ipadumper.shared.config import Settings
from ipadumper.shared.errors import BinaryNotFoundError
from ipadumper.shared.tools import Toolbox, require_success

PATH_LIKE = re.compile(r"/[^/\s]+/[^/\s]+")


@dataclass(frozen=True)
class MarkedLine:
    segments: tuple[tuple[str, bool], ...]

    @property
    def text(self) -> str:
        return "".join(text for text, _ in self.segments)

    @property
    def has_marker(self) -> bool:
        return any(marked for _, marked in self.segments)


@dataclass(frozen=True)
class StringLine:
    text: str
    path_like: bool


@dataclass
class BundleScan:
    app_dir: Path
    binary: Path
    plist_lines: list[MarkedLine] = field(default_factory=list)
    string_lines: list[StringLine] = field(default_factory=list)
    error: str | None = None


def main_executable(app_dir: Path) -> Path:
    return app_dir / app_dir.stem


def mark_line(line: str, marker: str) -> MarkedLine:
    if not marker or marker not in line:
        return MarkedLine(segments=((line, False),))
    segments: list[tuple[str, bool]] = []
    for index, part in enumerate(line.split(marker)):
        if index:
            segments.append((marker, True))
        if part:
            segments.append((part, False))
    return MarkedLine(segments=tuple(segments))


def mark_output(output: str, marker: str) -> list[MarkedLine]:
    return [mark_line(line, marker) for line in output.splitlines()]


def is_path_like(line: str) -> bool:
    return PATH_LIKE.search(line) is not None


def is_excluded(line: str, exclusions: Sequence[str]) -> bool:
    return any(pattern in line for pattern in exclusions)


def classify_strings(lines: Iterable[str], exclusions: Sequence[str]) -> list[StringLine]:
    """Drop excluded and blank lines, tag the rest, keep the input order."""
    results: list[StringLine] = []
    for line in lines:
        if not line.strip() or is_excluded(line, exclusions):
            continue
        results.append(StringLine(text=line, path_like=is_path_like(line)))
    return results


def slash_lines(output: str) -> list[str]:
    return [line for line in output.splitlines() if "/" in line]


def inspect_plist_markers(binary: Path, toolbox: Toolbox, settings: Settings) -> list[MarkedLine]:
    output = require_success(
        toolbox.binary_inspector,
        ["-qc", settings.inspector_query, str(binary)],
        stage="scan-bundle",
    )
    return mark_output(output, settings.link_marker)


def extract_strings(binary: Path, toolbox: Toolbox, settings: Settings) -> list[StringLine]:
    output = require_success(toolbox.strings, [str(binary)], stage="scan-bundle")
    return classify_strings(slash_lines(output), settings.exclusions)


def scan_bundle(app_dir: Path, toolbox: Toolbox, settings: Settings) -> BundleScan:
    binary = main_executable(app_dir)
    if not binary.is_file():
        raise BinaryNotFoundError(binary)
    return BundleScan(
        app_dir=app_dir,
        binary=binary,
        plist_lines=inspect_plist_markers(binary, toolbox, settings),
        string_lines=extract_strings(binary, toolbox, settings),
    )
