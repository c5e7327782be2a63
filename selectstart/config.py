"""
selectstart.config — YAML Configuration Loader
===============================================

**Why this file exists:**
This module reads ``config.yaml`` for the soft settings of the tracker:
community identity, the API request budget, poll cadence, alert policy,
and the alert-type → channel routing table.  Secrets (Discord token,
database URL, RetroAchievements key) stay in ``.env``.

Usage::

    from selectstart.config import load_config

    cfg = load_config()                  # reads ./config.yaml by default
    print(cfg.community_name)            # "Select Start"
    print(cfg.gateway.interval)          # 1.2
    print(cfg.routes["board_ranks"])     # (1300941091335438471,)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Rank alerts are the noisy ones; awards and unlocks are rare and deduplicated
DEFAULT_THROTTLED = frozenset({"board_ranks", "challenge_ranks"})


# ---------------------------------------------------------------------------
# Policy sections
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GatewayPolicy:
    """Outbound request budget for the RetroAchievements API."""

    requests_per_interval: int = 1
    interval: float = 1.2        # seconds
    max_retries: int = 3
    retry_delay: float = 3.0     # seconds, multiplied by the attempt number
    timeout: float = 15.0        # per HTTP request


@dataclass(frozen=True, slots=True)
class PollingPolicy:
    """Cadence and data-quality thresholds for the poll cycles."""

    rank_interval: float = 3600.0
    award_interval: float = 1800.0
    inter_entity_delay: float = 1.0
    top_k: int = 5
    challenge_top_k: int = 5
    consistency_tolerance: float = 0.2
    consistency_min_tolerance: int = 1
    reconfirm_delay: float = 2.0
    reconfirm_min_overlap: float = 0.9
    reconfirm_max_size_delta: int = 1
    max_leaderboard_entries: int = 1000
    recent_achievement_minutes: int = 120


@dataclass(frozen=True, slots=True)
class AlertPolicy:
    """Throttle and duplicate-suppression limits for the dispatcher."""

    min_alert_interval: float = 1800.0
    announced_id_cap: int = 100


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TrackerConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int

    gateway: GatewayPolicy = field(default_factory=GatewayPolicy)
    polling: PollingPolicy = field(default_factory=PollingPolicy)
    alerts: AlertPolicy = field(default_factory=AlertPolicy)

    # alert type → destination channel ids (one-to-many)
    routes: dict[str, tuple[int, ...]] = field(default_factory=dict)
    # alert types that obey the per-entity minimum alert interval
    throttled_alert_types: frozenset[str] = DEFAULT_THROTTLED

    # Optional YAML fixture with subjects / boards / challenges
    seed_file: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _section(raw: dict, name: str, cls: type) -> Any:
    """Build a policy dataclass from a YAML mapping, keeping defaults."""
    data = raw.get(name) or {}
    known = {f for f in cls.__dataclass_fields__}
    unknown = set(data) - known
    if unknown:
        raise KeyError(f"Unknown keys in '{name}' section: {sorted(unknown)}")
    return cls(**data)


def _parse_routes(raw: dict) -> dict[str, tuple[int, ...]]:
    routes: dict[str, tuple[int, ...]] = {}
    for alert_type, target in (raw.get("routes") or {}).items():
        if target is None:
            routes[alert_type] = ()
        elif isinstance(target, (list, tuple)):
            routes[alert_type] = tuple(int(t) for t in target)
        else:
            routes[alert_type] = (int(target),)
    return routes


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> TrackerConfig:
    """Read *path* and return a :class:`TrackerConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing, or a policy section has unknown keys.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    throttled = raw.get("throttled_alert_types")
    return TrackerConfig(
        community_name=raw["community_name"],
        bot_prefix=raw.get("bot_prefix", "!"),
        guild_id=int(raw["guild_id"]),
        gateway=_section(raw, "gateway", GatewayPolicy),
        polling=_section(raw, "polling", PollingPolicy),
        alerts=_section(raw, "alerts", AlertPolicy),
        routes=_parse_routes(raw),
        throttled_alert_types=(
            frozenset(throttled) if throttled is not None else DEFAULT_THROTTLED
        ),
        seed_file=raw.get("seed_file"),
    )
