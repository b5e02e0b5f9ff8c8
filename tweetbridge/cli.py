"""CLI entry point — Click group for running and inspecting the bridge."""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from tweetbridge.config import BridgeConfig, load_config
from tweetbridge.errors import StateError

logger = logging.getLogger(__name__)

# Libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "websockets")

config_option = click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file (environment variables take precedence)",
)


def _load(config_path: Path | None) -> BridgeConfig:
    try:
        return load_config(config_path)
    except (OSError, ValueError) as e:
        raise click.ClickException(str(e)) from e


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@click.group()
def main() -> None:
    """Tweetbridge — republish a Twitter home timeline into Mattermost."""


@main.command()
@config_option
@click.option("--debug", is_flag=True, help="Debug logging")
def run(config_path: Path | None, debug: bool) -> None:
    """Connect to both platforms and bridge until interrupted."""
    from tweetbridge.bridge import Bridge

    _setup_logging(debug)
    cfg = _load(config_path)
    logger.info("Starting bridge for %s channel %s", cfg.url, cfg.channel)
    code = asyncio.run(Bridge(cfg).run())
    sys.exit(code)


@main.command()
@config_option
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def state(config_path: Path | None, json_output: bool) -> None:
    """Show the persisted timeline cursor and trust map."""
    from tweetbridge.state import StateStore
    from tweetbridge.ui import print_state

    cfg = _load(config_path)
    store = StateStore(cfg.data_path)
    try:
        snapshot = store.load()
    except StateError as e:
        raise click.ClickException(str(e)) from e

    if json_output:
        click.echo(json.dumps(snapshot.to_dict(), indent=2, sort_keys=True))
        return
    print_state(snapshot, str(cfg.data_path))


@main.command()
@config_option
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def doctor(config_path: Path | None, json_output: bool) -> None:
    """Check configuration, state file and connectivity."""
    from tweetbridge.doctor import run_doctor

    cfg = _load(config_path)
    ok = asyncio.run(run_doctor(cfg, json_output=json_output))
    if not ok:
        sys.exit(1)
