"""
tests/test_config.py — YAML Configuration Loader Tests
=======================================================
"""

from __future__ import annotations

from pathlib import Path

import pytest

from selectstart.config import GatewayPolicy, PollingPolicy, load_config

MINIMAL = """
community_name: Select Start
guild_id: 42
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:

    def test_minimal_file_uses_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, MINIMAL))

        assert cfg.community_name == "Select Start"
        assert cfg.bot_prefix == "!"
        assert cfg.guild_id == 42
        assert cfg.gateway == GatewayPolicy()
        assert cfg.polling == PollingPolicy()
        assert cfg.routes == {}
        assert cfg.throttled_alert_types == frozenset({"board_ranks", "challenge_ranks"})
        assert cfg.seed_file is None

    def test_policy_sections_override_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, MINIMAL + """
gateway:
  interval: 2.5
polling:
  top_k: 3
alerts:
  min_alert_interval: 600
"""))
        assert cfg.gateway.interval == 2.5
        assert cfg.gateway.requests_per_interval == 1
        assert cfg.polling.top_k == 3
        assert cfg.alerts.min_alert_interval == 600

    def test_routes_accept_scalar_or_list(self, tmp_path):
        cfg = load_config(_write(tmp_path, MINIMAL + """
routes:
  board_ranks: 1
  achievement: [2, 3]
  shadow_award:
"""))
        assert cfg.routes == {"board_ranks": (1,), "achievement": (2, 3), "shadow_award": ()}

    def test_throttled_types_can_be_emptied(self, tmp_path):
        cfg = load_config(_write(tmp_path, MINIMAL + "throttled_alert_types: []\n"))
        assert cfg.throttled_alert_types == frozenset()

    def test_unknown_policy_key_is_rejected(self, tmp_path):
        with pytest.raises(KeyError, match="polling"):
            load_config(_write(tmp_path, MINIMAL + "polling:\n  top_kk: 3\n"))

    def test_missing_required_key(self, tmp_path):
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, "guild_id: 1\n"))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_example_config_loads(self):
        example = Path(__file__).resolve().parent.parent / "config.yaml.example"
        cfg = load_config(example)
        assert cfg.routes["achievement"] == (1300941091335438470, 1300941091335438472)
        assert cfg.polling.rank_interval == 3600
        assert cfg.polling.challenge_top_k == 5
        assert "challenge_ranks" in cfg.throttled_alert_types
