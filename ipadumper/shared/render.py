"""Console rendering and JSON reports for dump results."""
from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from ipadumper.ios.binary_scan import BundleScan
    from ipadumper.ios.dump import DumpResult
    from ipadumper.ios.manifest import HighlightedLine

console = Console()

MARKER_STYLE = "green"
PATH_STYLE = "green"
OTHER_STYLE = "red"


def print_manifest(lines: Iterable[HighlightedLine], path: Path) -> None:
    console.print(f"Highlighted keys in {escape(str(path))}:")
    for line in lines:
        console.print(Text(line.text, style=line.category or ""), soft_wrap=True)


def print_bundle(scan: BundleScan) -> None:
    name = scan.app_dir.name
    if scan.error:
        console.print(f"[bold red]Scan of {escape(name)} failed: {escape(scan.error)}")
        return

    console.print(f"Results from r2 command on {escape(name)}:")
    for line in scan.plist_lines:
        text = Text()
        for segment, marked in line.segments:
            text.append(segment, style=MARKER_STYLE if marked else "")
        console.print(text, soft_wrap=True)

    console.print("Filtered strings with slashes:")
    for line in scan.string_lines:
        console.print(Text(line.text, style=PATH_STYLE if line.path_like else OTHER_STYLE), soft_wrap=True)


def print_summary(result: DumpResult) -> None:
    table = Table(title=f"Dump Summary ({escape(result.package.name)})")
    table.add_column("Bundle")
    table.add_column("Plist marker lines")
    table.add_column("applinks")
    table.add_column("Path-like strings")
    table.add_column("Other strings")
    for scan in result.scans:
        if scan.error:
            table.add_row(escape(scan.app_dir.name), "-", "-", "-", f"[red]{escape(scan.error)}")
            continue
        path_like = sum(1 for line in scan.string_lines if line.path_like)
        table.add_row(
            escape(scan.app_dir.name),
            str(len(scan.plist_lines)),
            str(sum(1 for line in scan.plist_lines if line.has_marker)),
            str(path_like),
            str(len(scan.string_lines) - path_like),
        )
    console.print(table)

    for failure in result.failures:
        console.print(f"[yellow]{escape(failure)}")


def to_report(result: DumpResult) -> dict[str, Any]:
    return {
        "package": str(result.package),
        "output": str(result.output),
        "entries": result.extraction.entries if result.extraction else 0,
        "manifests_in_archive": [str(path) for path in result.extraction.manifests] if result.extraction else [],
        "normalized_manifest": str(result.manifest) if result.manifest else None,
        "highlights": [
            {"line": index, "text": line.text, "category": line.category}
            for index, line in enumerate(result.highlights, start=1)
            if line.category
        ],
        "bundles": [
            {
                "app_dir": str(scan.app_dir),
                "binary": str(scan.binary),
                "error": scan.error,
                "plist_markers": [line.text for line in scan.plist_lines if line.has_marker],
                "strings": [{"text": line.text, "path_like": line.path_like} for line in scan.string_lines],
            }
            for scan in result.scans
        ],
        "failures": result.failures,
    }


def write_report(result: DumpResult, report: Path) -> None:
    report.parent.mkdir(parents=True, exist_ok=True)
    report.write_text(json.dumps(to_report(result), indent=2), encoding="utf-8")
    console.print(f"Wrote dump report {escape(str(report))}")
