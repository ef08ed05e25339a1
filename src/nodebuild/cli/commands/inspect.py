"""`nodebuild inspect` command implementation."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ...pipeline.metadata import METADATA_FILENAME, PREVIOUS_FILENAME, parse_metadata
from ...services.signature import read_signature

console = Console()


def inspect(cache_dir: Path = typer.Argument(..., help="Cache directory of a previous build.")) -> None:
    """Display build metadata and the cache signature recorded in CACHE_DIR."""
    metadata_dir = cache_dir / "build-data"
    current = metadata_dir / METADATA_FILENAME
    if not current.exists():
        raise typer.BadParameter(f"No build metadata found under {metadata_dir}")

    signature = read_signature(cache_dir / "node" / "signature")
    if signature is None:
        console.print("[yellow]No cache signature recorded.[/yellow]")
    else:
        console.print(f"[bold]Signature:[/bold] {signature.serialize()}")

    for title, path in (("Last build", current), ("Build before", metadata_dir / PREVIOUS_FILENAME)):
        if not path.exists():
            continue
        values = parse_metadata(path.read_text())
        table = Table(title=title, show_header=True, header_style="bold green")
        table.add_column("Key")
        table.add_column("Value")
        for key, value in values.items():
            table.add_row(key, value)
        console.print(table)
