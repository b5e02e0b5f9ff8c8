"""Tests for configuration loading."""
from __future__ import annotations

from pathlib import Path

import pytest

from tweetbridge.config import BridgeConfig, _parse_interval, load_config

FULL_ENV = {
    "MATTERMOST_URL": "https://chat.example.com",
    "MATTERMOST_USER": "bot",
    "MATTERMOST_PASSWORD": "pw",
    "MATTERMOST_TEAM": "team",
    "TWITTER_CONSUMER_KEY": "ck",
    "TWITTER_CONSUMER_SECRET": "cs",
    "TWITTER_ACCESS_TOKEN": "at",
    "TWITTER_ACCESS_SECRET": "as",
}


class TestParseInterval:
    @pytest.mark.parametrize("spec, expected", [
        (90, 90),
        ("120", 120),
        ("60s", 60),
        ("5m", 300),
        ("2h", 7200),
        ("10 M", 600),
    ])
    def test_valid(self, spec, expected):
        assert _parse_interval(spec) == expected

    @pytest.mark.parametrize("spec", ["", "soon", "5d", "-3"])
    def test_invalid(self, spec):
        with pytest.raises(ValueError):
            _parse_interval(spec)


class TestLoadConfig:
    def test_defaults_from_env(self):
        cfg = load_config(env=FULL_ENV)
        assert cfg.url == "https://chat.example.com"
        assert cfg.channel == "town-square"
        assert cfg.debug_channel == ""
        assert cfg.max_tweets == 20
        assert cfg.check_interval == 120
        assert cfg.reconnect_max_elapsed == 900
        assert cfg.problems() == []

    def test_yaml_then_env_override(self, tmp_path: Path):
        path = tmp_path / "bridge.yaml"
        path.write_text(
            "url: https://yaml.example.com\n"
            "channel: tweets\n"
            "check_interval: 5m\n"
            "data_path: /var/lib/tweetbridge/state.json\n"
        )
        cfg = load_config(path, env={**FULL_ENV, "MAX_TWEETS": "50"})
        assert cfg.url == "https://chat.example.com"
        assert cfg.channel == "tweets"
        assert cfg.check_interval == 300
        assert cfg.max_tweets == 50
        assert cfg.data_path == Path("/var/lib/tweetbridge/state.json")

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", env={})

    def test_unknown_key(self, tmp_path: Path):
        path = tmp_path / "bridge.yaml"
        path.write_text("chanel: typo\n")
        with pytest.raises(ValueError, match="chanel"):
            load_config(path, env={})

    def test_non_mapping_file(self, tmp_path: Path):
        path = tmp_path / "bridge.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_config(path, env={})


class TestProblems:
    def test_empty_config_lists_everything(self):
        problems = BridgeConfig().problems()
        joined = "\n".join(problems)
        assert "MATTERMOST_URL" in joined
        assert "MATTERMOST_TEAM" in joined
        assert "MATTERMOST_TOKEN" in joined
        assert "TWITTER_ACCESS_SECRET" in joined

    def test_token_replaces_password(self):
        env = {k: v for k, v in FULL_ENV.items() if k not in ("MATTERMOST_USER", "MATTERMOST_PASSWORD")}
        cfg = load_config(env={**env, "MATTERMOST_TOKEN": "pat"})
        assert cfg.problems() == []
