#!/usr/bin/env python3
"""Verify the command-line tools the dump pipeline shells out to."""
from __future__ import annotations

import argparse
import platform
import shutil
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ipadumper.shared.config import Settings, load_config
from ipadumper.shared.errors import DumperError
from ipadumper.shared.tools import BUILTINS

console = Console()

# r2 prints its version with -v and rejects --version on older releases
VERSION_FLAGS = {
    "r2": "-v",
}


def command_version(cmd: str) -> str | None:
    flag = VERSION_FLAGS.get(Path(cmd).name, "--version")
    try:
        result = subprocess.run([cmd, flag], check=False, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    except OSError:
        return None
    output = result.stdout.strip().splitlines()
    return output[0] if output else None


def check_command(cmd: str) -> tuple[bool, str | None]:
    location = shutil.which(cmd)
    if not location:
        return False, None
    return True, command_version(cmd)


def verify(settings: Settings) -> list[tuple[str, str, bool, str | None, bool]]:
    rows = []
    for name, spec in settings.tools.items():
        ok, version = check_command(spec.executable)
        rows.append((name, spec.executable, ok, version, name in BUILTINS))
    return rows


def main() -> None:
    parser = argparse.ArgumentParser(description="Verify dump toolchain")
    parser.add_argument("--config", type=Path, help="YAML config file (default: $IPADUMPER_CONFIG)")
    args = parser.parse_args()

    try:
        settings = load_config(args.config)
    except DumperError as exc:
        console.print(f"[bold red]{escape(str(exc))}")
        sys.exit(1)

    table = Table(title=f"Toolchain Verification ({platform.system()})")
    table.add_column("Tool")
    table.add_column("Command")
    table.add_column("Status")
    table.add_column("Version")

    failures = []
    for name, cmd, ok, version, has_builtin in verify(settings):
        if ok:
            status = "✅"
        elif has_builtin:
            status = "➖ builtin"
        else:
            status = "❌"
            failures.append(cmd)
        table.add_row(name, escape(cmd), status, escape(version or "<missing>"))

    console.print(table)

    if failures:
        console.print(f"[bold red]Missing commands: {escape(', '.join(failures))}")
        sys.exit(1)

    console.print("[bold green]All required commands are available.")


if __name__ == "__main__":
    main()
