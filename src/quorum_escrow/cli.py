"""Command line entry point."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml

from .config import EscrowConfig
from .errors import EscrowError
from .scenario import run_scenario
from .state_digest import compute_state_digest

logger = logging.getLogger(__name__)


class _ReportDumper(yaml.SafeDumper):
    """Block-style YAML with unquoted hex strings and no anchors."""

    def ignore_aliases(self, data: object) -> bool:
        return True


_ReportDumper.add_representer(
    str, lambda dumper, data: dumper.represent_scalar("tag:yaml.org,2002:str", data, style=None)
)


def _render(data: dict, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(data, indent=2)
    return yaml.dump(data, Dumper=_ReportDumper, sort_keys=False, width=4096)


def _load_document(path: Path) -> dict:
    text = path.read_text()
    if path.suffix == ".json":
        return json.loads(text)
    return yaml.safe_load(text) or {}


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="YAML configuration file")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Override the configured log level")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], log_level: Optional[str]) -> None:
    """Quorum escrow tools."""
    try:
        config = EscrowConfig.from_yaml(config_path) if config_path else EscrowConfig()
        config = EscrowConfig.from_env(config)
    except EscrowError as exc:
        raise click.ClickException(str(exc)) from exc
    if log_level:
        config.log_level = log_level.upper()

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    ctx.obj = config


@main.command()
@click.argument("scenario", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path),
              help="Write the report here instead of stdout")
@click.option("--format", "fmt", type=click.Choice(["yaml", "json"]), default="yaml", show_default=True)
@click.option("--strict", is_flag=True, help="Exit non-zero if any step was rejected")
@click.pass_obj
def run(config: EscrowConfig, scenario: Path, output: Optional[Path], fmt: str, strict: bool) -> None:
    """Replay SCENARIO against a fresh escrow and report the outcome."""
    try:
        report = run_scenario(_load_document(scenario), config=config)
    except EscrowError as exc:
        raise click.ClickException(str(exc)) from exc

    text = _render(report.to_json(), fmt)
    if output:
        output.write_text(text)
        logger.info("report written to %s", output)
    else:
        click.echo(text)

    if report.create_error is not None or (strict and not report.ok):
        sys.exit(1)


@main.command()
@click.argument("state_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def digest(state_file: Path) -> None:
    """Print the state digest of a saved escrow record."""
    data = _load_document(state_file)
    if isinstance(data, dict) and "final_state" in data:
        data = data["final_state"]
    if not isinstance(data, dict):
        raise click.ClickException("no escrow record in file")
    try:
        click.echo(compute_state_digest(data))
    except (EscrowError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.option("--host", help="Bind address (overrides config)")
@click.option("--port", type=int, help="Bind port (overrides config)")
@click.pass_obj
def serve(config: EscrowConfig, host: Optional[str], port: Optional[int]) -> None:
    """Serve escrows over HTTP backed by an in-memory ledger."""
    from .server import serve as serve_http

    if host:
        config.host = host
    if port is not None:
        config.port = port
    serve_http(config)


if __name__ == "__main__":
    main()
