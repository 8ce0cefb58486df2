#!/usr/bin/env python3
"""Static first pass over an IPA: unpack, normalize Info.plist, scan the binary.

Stages run strictly in order:

    validate-input -> extract -> normalize-manifest -> highlight-manifest
    -> discover-bundles -> scan-bundle (per .app) -> done

Manifest problems are recorded and the bundle scans still run; any other
failure ends the run. Extracted files are left on disk either way.
"""
from __future__ import annotations

import argparse
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from ipadumper.ios.binary_scan import BundleScan, main_executable, scan_bundle
from ipadumper.ios.extract_archive import ExtractionResult, find_app_dirs, find_manifests, prepare_workspace, unzip
from ipadumper.ios.manifest import HighlightedLine, highlight_file, normalize_manifest
from ipadumper.shared.config import Settings, load_config
from ipadumper.shared.errors import BundleDiscoveryError, DumperError
from ipadumper.shared.render import print_bundle, print_manifest, print_summary, write_report
from ipadumper.shared.tools import Toolbox, build_toolbox

console = Console()


@dataclass
class DumpResult:
    package: Path
    output: Path
    extraction: ExtractionResult | None = None
    manifest: Path | None = None
    highlights: list[HighlightedLine] = field(default_factory=list)
    scans: list[BundleScan] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    def fail(self, stage: str, message: str) -> None:
        self.failures.append(f"{stage}: {message}")

    @property
    def ok(self) -> bool:
        return not self.failures


def inspect_manifest(result: DumpResult, settings: Settings, toolbox: Toolbox) -> None:
    manifests = find_manifests(result.output, settings.manifest_name)
    if not manifests:
        result.fail(
            "normalize-manifest",
            f"{settings.manifest_name} not found under {result.output / 'Payload' / '*.app'}",
        )
        return
    try:
        result.manifest = normalize_manifest(manifests[0], result.output, toolbox.plist_converter)
        result.highlights = highlight_file(result.manifest, settings.highlight_rules)
    except DumperError as exc:
        result.fail(exc.stage, str(exc))


def scan_bundles(
    result: DumpResult,
    settings: Settings,
    toolbox: Toolbox,
    on_bundle: Callable[[BundleScan], None] | None = None,
) -> None:
    app_dirs = find_app_dirs(result.output)
    if not app_dirs:
        raise BundleDiscoveryError("No .app directories found.")

    for app_dir in app_dirs:
        try:
            scan = scan_bundle(app_dir, toolbox, settings)
        except DumperError as exc:
            if not settings.continue_on_error:
                raise
            scan = BundleScan(app_dir=app_dir, binary=main_executable(app_dir), error=str(exc))
            result.fail(exc.stage, f"{app_dir.name}: {exc}")
        result.scans.append(scan)
        if on_bundle:
            on_bundle(scan)


def dump(
    package: Path,
    settings: Settings,
    toolbox: Toolbox,
    output: Path | None = None,
    on_manifest: Callable[[list[HighlightedLine], Path], None] | None = None,
    on_bundle: Callable[[BundleScan], None] | None = None,
) -> DumpResult:
    zip_path = prepare_workspace(package, output, settings.package_suffix)
    result = DumpResult(package=package, output=zip_path.parent)
    result.extraction = unzip(zip_path, result.output, settings.manifest_name)

    inspect_manifest(result, settings, toolbox)
    if result.highlights and on_manifest:
        on_manifest(result.highlights, result.manifest)

    scan_bundles(result, settings, toolbox, on_bundle)
    return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ipadumper",
        description="Find key information in an iOS application package",
    )
    parser.add_argument("package", nargs="?", type=Path, help="Path to the .ipa file")
    parser.add_argument("-o", "--output", type=Path, help="Working directory (default: package path without extension)")
    parser.add_argument("--config", type=Path, help="YAML config file (default: $IPADUMPER_CONFIG)")
    parser.add_argument("--report", type=Path, help="Optional path to write a JSON report")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.package is None:
        parser.print_help()
        sys.exit(0)

    try:
        settings = load_config(args.config)
        toolbox = build_toolbox(settings)
        result = dump(
            args.package,
            settings,
            toolbox,
            output=args.output,
            on_manifest=print_manifest,
            on_bundle=print_bundle,
        )
    except DumperError as exc:
        console.print(f"[bold red]Error ({exc.stage}): {escape(str(exc))}")
        sys.exit(1)

    print_summary(result)
    if args.report:
        write_report(result, args.report)

    if not result.ok:
        console.print(f"[bold red]Completed with {len(result.failures)} failure(s); extracted files are in {escape(str(result.output))}")
        sys.exit(1)
    console.print(f"[green]File successfully extracted and Info.plist converted to XML format in: {escape(str(result.output))}")


if __name__ == "__main__":
    main()
