"""Configuration — loads .env, an optional YAML file, and environment overrides."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

# field name → environment variable
ENV_VARS: dict[str, str] = {
    "url": "MATTERMOST_URL",
    "user": "MATTERMOST_USER",
    "password": "MATTERMOST_PASSWORD",
    "token": "MATTERMOST_TOKEN",
    "team": "MATTERMOST_TEAM",
    "channel": "MATTERMOST_CHANNEL",
    "debug_channel": "MATTERMOST_DEBUG_CHANNEL",
    "consumer_key": "TWITTER_CONSUMER_KEY",
    "consumer_secret": "TWITTER_CONSUMER_SECRET",
    "access_token": "TWITTER_ACCESS_TOKEN",
    "access_secret": "TWITTER_ACCESS_SECRET",
    "max_tweets": "MAX_TWEETS",
    "check_interval": "CHECK_INTERVAL",
    "data_path": "TWEETBRIDGE_DATA",
    "reconnect_max_elapsed": "RECONNECT_MAX_ELAPSED",
    "ready_timeout": "STREAM_READY_TIMEOUT",
}

_INTERVAL_FIELDS = {"check_interval", "reconnect_max_elapsed", "ready_timeout"}


def _parse_interval(spec: Any) -> int:
    """Parse an interval like '30m', '1h', '60s', or bare '120' (seconds)."""
    if isinstance(spec, (int, float)) and not isinstance(spec, bool):
        return int(spec)
    s = str(spec).strip()
    m = re.match(r"^(\d+)\s*(s|m|h)$", s, re.I)
    if m:
        return int(m.group(1)) * {"s": 1, "m": 60, "h": 3600}[m.group(2).lower()]
    if s.isdigit():
        return int(s)
    raise ValueError(f"Invalid interval: {spec!r}")


@dataclass
class BridgeConfig:
    # Mattermost
    url: str = ""
    user: str = ""
    password: str = ""
    token: str = ""
    team: str = ""
    channel: str = "town-square"
    debug_channel: str = ""

    # Twitter
    consumer_key: str = ""
    consumer_secret: str = ""
    access_token: str = ""
    access_secret: str = ""
    max_tweets: int = 20
    check_interval: int = 120  # seconds

    # Runtime
    data_path: Path = Path("tweetbridge.json")
    reconnect_max_elapsed: int = 900  # seconds, 0 = retry forever
    ready_timeout: int = 30  # seconds

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> BridgeConfig:
        """Build a config from loose key/value pairs (YAML or env strings)."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if value is None:
                continue
            if key in _INTERVAL_FIELDS:
                kwargs[key] = _parse_interval(value)
            elif key == "max_tweets":
                kwargs[key] = int(value)
            elif key == "data_path":
                kwargs[key] = Path(str(value)).expanduser()
            else:
                kwargs[key] = str(value)
        return cls(**kwargs)

    def problems(self) -> list[str]:
        """Return a list of configuration problems (empty when usable)."""
        problems: list[str] = []
        if not self.url:
            problems.append(f"Mattermost URL is not set ({ENV_VARS['url']})")
        if not self.team:
            problems.append(f"Mattermost team is not set ({ENV_VARS['team']})")
        if not self.channel:
            problems.append(f"Mattermost channel is not set ({ENV_VARS['channel']})")
        if not self.token and not (self.user and self.password):
            problems.append(
                f"Need {ENV_VARS['token']} or both {ENV_VARS['user']} and {ENV_VARS['password']}"
            )
        for key in ("consumer_key", "consumer_secret", "access_token", "access_secret"):
            if not getattr(self, key):
                problems.append(f"Twitter credential missing ({ENV_VARS[key]})")
        if self.max_tweets <= 0:
            problems.append("max_tweets must be positive")
        if self.check_interval <= 0:
            problems.append("check_interval must be positive")
        return problems


def load_config(path: Path | None = None, *, env: dict[str, str] | None = None) -> BridgeConfig:
    """Resolve configuration: YAML file first, environment variables on top.

    ``.env`` in the working directory is loaded with python-dotenv (never
    overriding variables that are already set). Pass ``env`` to bypass the
    process environment entirely.
    """
    if env is None:
        load_dotenv(Path.cwd() / ".env")
        env = dict(os.environ)

    data: dict[str, Any] = {}
    if path is not None:
        if not path.is_file():
            raise FileNotFoundError(f"Config file not found: {path}")
        loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        data.update(loaded)

    for key, var in ENV_VARS.items():
        value = env.get(var)
        if value:
            data[key] = value

    return BridgeConfig.from_mapping(data)
