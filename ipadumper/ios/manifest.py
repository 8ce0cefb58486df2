"""Normalize Info.plist to XML and tag lines carrying interesting keys."""
from __future__ import annotations

import shutil
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from ipadumper.shared.config import HighlightRule
from ipadumper.shared.errors import ManifestError
from ipadumper.shared.tools import Tool, require_success

console = Console()

NORMALIZED_NAME = "Info.plist"


@dataclass(frozen=True)
class HighlightedLine:
    text: str
    category: str | None = None


def normalize_manifest(plist_path: Path, target_dir: Path, converter: Tool) -> Path:
    """Copy ``plist_path`` into ``target_dir`` and convert the copy to XML in place."""
    normalized = target_dir / NORMALIZED_NAME
    try:
        shutil.copyfile(plist_path, normalized)
    except OSError as exc:
        raise ManifestError(f"Error copying {plist_path} to {normalized}: {exc}", stage="normalize-manifest") from exc

    require_success(converter, ["-convert", "xml1", str(normalized)], stage="normalize-manifest")
    console.print(f"[green]Successfully converted {escape(str(normalized))} to XML format.")
    return normalized


def match_rule(line: str, rules: Sequence[HighlightRule]) -> HighlightRule | None:
    for rule in rules:
        if rule.key in line:
            return rule
    return None


def highlight_lines(lines: Iterable[str], rules: Sequence[HighlightRule]) -> Iterator[HighlightedLine]:
    for line in lines:
        text = line.rstrip("\r\n")
        rule = match_rule(text, rules)
        yield HighlightedLine(text=text, category=rule.category if rule else None)


def highlight_file(path: Path, rules: Sequence[HighlightRule]) -> list[HighlightedLine]:
    try:
        with path.open("r", encoding="utf-8", errors="replace") as fh:
            return list(highlight_lines(fh, rules))
    except OSError as exc:
        raise ManifestError(f"failed to read {path}: {exc}", stage="highlight-manifest") from exc
