"""Command-line interface bootstrap for nodebuild."""
from __future__ import annotations

import typer

from .commands.compile import compile
from .commands.inspect import inspect


app = typer.Typer(help="Build orchestrator for Node.js applications")

app.command()(compile)
app.command()(inspect)

__all__ = ["app"]
