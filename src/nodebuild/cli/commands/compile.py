"""`nodebuild compile` command implementation."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ...config.loader import build_environment, load_config
from ...errors import ConfigurationError
from ...logging_utils import configure_logging
from ...pipeline.runner import PipelineRunner
from ...workspace import BuildContext

console = Console(stderr=True)


def compile(
    build_dir: Path = typer.Argument(
        ..., help="Application source directory to build in place.", exists=True, file_okay=False, resolve_path=True
    ),
    cache_dir: Path = typer.Argument(..., help="Directory persisted between builds.", resolve_path=True),
    env_dir: Path = typer.Argument(
        ..., help="Directory whose files are exported as environment variables.", resolve_path=True
    ),
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Optional YAML file with operator defaults (mirrors, retries).",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """Install node, npm/yarn and dependencies into BUILD_DIR."""
    configure_logging(level=log_level)

    env = build_environment(env_dir)
    try:
        cfg = load_config(env, config)
    except ConfigurationError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1) from exc

    context = BuildContext.create(
        build_dir=build_dir,
        cache_dir=cache_dir,
        env_dir=env_dir,
        platform=cfg.platform,
        env=env,
    )
    result = PipelineRunner(context=context, config=cfg).run()

    table = Table(title="Stages", show_header=True, header_style="bold magenta")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Duration (s)")
    for stage in result.stage_results:
        table.add_row(stage.name, stage.status, f"{stage.duration_seconds:.2f}")
    console.print(table)

    if not result.succeeded:
        console.print(f"[bold red]Build failed[/bold red] after {result.duration_seconds:.2f}s")
        raise typer.Exit(code=1)
    console.print(
        f"[bold green]Build succeeded[/bold green] in {result.duration_seconds:.2f}s "
        f"(cache: {result.cache_status})"
    )
