"""
Select Start — Achievement Progress Tracker for Discord Communities
====================================================================
Polls the RetroAchievements API on behalf of a community's members,
keeps per-board standings snapshots, detects rank and award changes,
and announces each change once to the right Discord channels.

Package layout::

    selectstart/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Presentation constants + cache TTL classes
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Roster, award records, boards, challenges
    ├── engine/
    │   ├── cache.py       # TTL response cache
    │   ├── awards.py      # Award tier state machine + month windows
    │   ├── snapshots.py   # Standings snapshots + diffing
    │   ├── events.py      # TransitionEvent + alert types
    │   └── dedupe.py      # Bounded announced-id log
    ├── services/
    │   ├── gateway.py         # Rate-limited, retrying call queue
    │   ├── ra_client.py       # RetroAchievements HTTP client + cached API
    │   ├── ra_models.py       # Response decoding
    │   ├── repository.py      # Persisted profiles + tracked config
    │   ├── rank_tracker.py    # Board snapshot diff engine
    │   ├── award_tracker.py   # Award tiers + achievement feed
    │   ├── dispatcher.py      # Routing, throttling, dedupe, delivery
    │   ├── throttle.py        # Per-entity alert interval
    │   ├── embeds.py          # Message payloads + Discord embeds
    │   ├── sinks.py           # Notification sinks
    │   ├── scheduler.py       # Single-flight poll loop
    │   ├── tracking_service.py  # Rank + award poll cycles
    │   └── seed.py            # YAML fixture seeding
    └── bot/
        ├── core.py        # Bot subclass, component wiring
        └── __main__.py    # python -m selectstart.bot
"""

__version__ = "0.1.0"
