"""
tests/test_rank_tracker.py — RankDiffEngine & Challenge Standings Tests
=========================================================================

The API is replaced by ``FakeLeaderboardApi``, which hands out queued
``Result`` objects and records how it was called.
"""

from __future__ import annotations

from conftest import FakeClock, run_async, utc
from selectstart.config import PollingPolicy
from selectstart.engine.awards import AwardTier, ChallengeSystem
from selectstart.engine.events import EventKind
from selectstart.engine.snapshots import ChallengeStanding
from selectstart.services.gateway import ErrorKind, Result
from selectstart.services.ra_models import LeaderboardEntry
from selectstart.services.rank_tracker import (
    ChallengeStandingsEngine,
    PollStatus,
    RankDiffEngine,
    SnapshotStore,
)
from selectstart.services.repository import BoardConfig, ChallengeTarget

BOARD = BoardConfig(board_id="smw-any", leaderboard_id=4401, title="SMW Any%", top_k=3)
VOLATILE = BoardConfig(
    board_id="tetris", leaderboard_id=77, title="Tetris", top_k=3, volatile=True
)


def _listing(*names: str) -> Result:
    return Result.success([
        LeaderboardEntry.model_validate({"User": n, "Rank": i, "FormattedScore": f"{i}"})
        for i, n in enumerate(names, start=1)
    ])


class FakeLeaderboardApi:
    def __init__(self, *results: Result) -> None:
        self.results = list(results)
        self.calls: list[dict] = []

    async def leaderboard_entries(self, leaderboard_id, max_entries=1000, page_size=500,
                                  use_cache=True):
        self.calls.append({"leaderboard_id": leaderboard_id, "use_cache": use_cache})
        return self.results.pop(0)


def _engine(api, clock: FakeClock | None = None, **policy) -> RankDiffEngine:
    clock = clock or FakeClock()
    return RankDiffEngine(
        api, SnapshotStore(), PollingPolicy(**policy),
        sleep=clock.sleep, now=lambda: utc(2025, 6, 10, 12),
    )


def _poll(engine: RankDiffEngine, board: BoardConfig, roster):
    return run_async(engine.poll_board(board, roster))


ROSTER = [f"player{i}" for i in range(50)]


class TestBaseline:

    def test_first_poll_is_silent_baseline(self):
        api = FakeLeaderboardApi(_listing(*ROSTER))
        engine = _engine(api)

        result = _poll(engine, BOARD, ROSTER)

        assert result.status is PollStatus.BASELINE
        assert result.events == []
        assert result.snapshot_size == 50
        assert len(engine.store.get("smw-any")) == 50

    def test_identical_poll_produces_no_events(self):
        api = FakeLeaderboardApi(_listing(*ROSTER), _listing(*ROSTER))
        engine = _engine(api)

        _poll(engine, BOARD, ROSTER)
        result = _poll(engine, BOARD, ROSTER)

        assert result.status is PollStatus.DIFFED
        assert result.events == []

    def test_untracked_players_are_ignored(self):
        api = FakeLeaderboardApi(
            _listing("alice", "bob"),
            _listing("stranger", "alice", "bob"),
        )
        engine = _engine(api)

        _poll(engine, BOARD, ["alice", "bob"])
        result = _poll(engine, BOARD, ["alice", "bob"])
        assert result.events == []


class TestDiffing:

    def test_climb_into_second_place(self):
        api = FakeLeaderboardApi(
            _listing("Bob", "Carol", "Dave", "Alice"),
            _listing("Bob", "Alice", "Carol", "Dave"),
        )
        engine = _engine(api)
        roster = ["alice", "bob", "carol", "dave"]

        _poll(engine, BOARD, roster)
        result = _poll(engine, BOARD, roster)

        by_subject = {e.subject_key: e for e in result.events}
        assert by_subject["alice"].kind is EventKind.RANK_IMPROVED
        assert (by_subject["alice"].previous_rank, by_subject["alice"].new_rank) == (4, 2)
        assert "bob" not in by_subject
        assert by_subject["alice"].entity_title == "SMW Any%"

    def test_policy_top_k_used_when_board_has_none(self):
        board = BoardConfig(board_id="b", leaderboard_id=1, title="B")
        api = FakeLeaderboardApi(_listing("a", "b", "c"), _listing("c", "a", "b"))
        engine = _engine(api, top_k=1)

        _poll(engine, board, ["a", "b", "c"])
        result = _poll(engine, board, ["a", "b", "c"])

        kinds = {(e.subject_key, e.kind) for e in result.events}
        assert kinds == {("c", EventKind.RANK_IMPROVED), ("a", EventKind.FELL_OUT_OF_TOP_K)}


class TestConsistencyGate:

    def test_mass_drop_is_stored_but_not_diffed(self):
        big = [f"p{i}" for i in range(100)]
        api = FakeLeaderboardApi(_listing(*big), _listing(*big[:10]), _listing(*big[:10]))
        engine = _engine(api)

        _poll(engine, BOARD, big)
        gated = _poll(engine, BOARD, big)

        assert gated.status is PollStatus.INCONSISTENT
        assert gated.events == []
        assert engine.store.inconsistency_count("smw-any") == 1
        assert len(engine.store.get("smw-any")) == 10

        # The small listing is now the baseline; a repeat is consistent
        settled = _poll(engine, BOARD, big)
        assert settled.status is PollStatus.DIFFED
        assert settled.events == []
        assert engine.store.inconsistency_count("smw-any") == 0

    def test_consecutive_inconsistencies_are_counted(self):
        api = FakeLeaderboardApi(
            _listing(*(f"p{i}" for i in range(100))),
            _listing(*(f"p{i}" for i in range(10))),
            _listing(*(f"p{i}" for i in range(60))),
        )
        engine = _engine(api)
        roster = [f"p{i}" for i in range(100)]

        _poll(engine, BOARD, roster)
        _poll(engine, BOARD, roster)
        _poll(engine, BOARD, roster)
        assert engine.store.inconsistency_count("smw-any") == 2


class TestFetchFailure:

    def test_failed_fetch_keeps_baseline(self):
        api = FakeLeaderboardApi(
            _listing("a", "b"),
            Result.failure(ErrorKind.TRANSIENT, "timeout"),
        )
        engine = _engine(api)

        _poll(engine, BOARD, ["a", "b"])
        before = engine.store.get("smw-any")
        result = _poll(engine, BOARD, ["a", "b"])

        assert result.status is PollStatus.FETCH_FAILED
        assert result.events == []
        assert engine.store.get("smw-any") is before

    def test_failed_first_fetch_leaves_no_baseline(self):
        engine = _engine(FakeLeaderboardApi(Result.failure(ErrorKind.NOT_FOUND)))
        _poll(engine, BOARD, ["a"])
        assert "smw-any" not in engine.store


class TestReconfirmation:

    def test_volatile_board_is_fetched_twice_bypassing_cache(self):
        clock = FakeClock()
        api = FakeLeaderboardApi(_listing("a", "b", "c"), _listing("a", "b", "c"))
        engine = _engine(api, clock, reconfirm_delay=2.0)

        result = _poll(engine, VOLATILE, ["a", "b", "c"])

        assert result.status is PollStatus.BASELINE
        assert [c["use_cache"] for c in api.calls] == [True, False]
        assert clock.sleeps == [2.0]

    def test_disagreeing_fetches_prefer_larger(self):
        api = FakeLeaderboardApi(_listing("a", "b", "c", "d", "e"), _listing("a", "b"))
        engine = _engine(api)

        result = _poll(engine, VOLATILE, ["a", "b", "c", "d", "e"])
        assert result.snapshot_size == 5

    def test_agreeing_fetches_use_second(self):
        api = FakeLeaderboardApi(_listing("a", "b", "c"), _listing("b", "a", "c"))
        engine = _engine(api)

        _poll(engine, VOLATILE, ["a", "b", "c"])
        assert engine.store.get("tetris").entries["b"].community_rank == 1

    def test_failed_reconfirm_falls_back_to_first(self):
        api = FakeLeaderboardApi(_listing("a", "b"), Result.failure(ErrorKind.TRANSIENT))
        engine = _engine(api)

        result = _poll(engine, VOLATILE, ["a", "b"])
        assert result.status is PollStatus.BASELINE
        assert result.snapshot_size == 2

    def test_stable_board_fetched_once(self):
        clock = FakeClock()
        api = FakeLeaderboardApi(_listing("a"))
        engine = _engine(api, clock)

        _poll(engine, BOARD, ["a"])
        assert len(api.calls) == 1
        assert clock.sleeps == []


CHALLENGE = ChallengeTarget(
    system=ChallengeSystem.MONTHLY, period_key="2025-06", game_id=355,
    game_title="Mega Man X", required_ids=tuple(str(i) for i in range(10)),
    total_required=10, beaten_threshold=6,
)
SUBJECTS = ["alice", "bob", "carol", "dave"]


def _standing(key: str, count: int, tier: AwardTier = AwardTier.PARTICIPATION):
    return ChallengeStanding(key, key.title(), tier, count)


def _measured(**counts: int) -> dict[str, ChallengeStanding]:
    return {key: _standing(key, count) for key, count in counts.items()}


class TestChallengeStandings:

    def _engine(self, **policy) -> ChallengeStandingsEngine:
        return ChallengeStandingsEngine(
            SnapshotStore(), PollingPolicy(**policy), now=lambda: utc(2025, 6, 10, 12)
        )

    def test_entity_id_names_system_and_month(self):
        assert ChallengeStandingsEngine.entity_id(CHALLENGE) == "standings:monthly:2025-06"

    def test_baseline_then_overtake(self):
        engine = self._engine()
        first = engine.poll_challenge(CHALLENGE, _measured(alice=4, bob=2, carol=1), SUBJECTS)
        second = engine.poll_challenge(CHALLENGE, _measured(alice=4, bob=5, carol=1), SUBJECTS)

        assert first.status is PollStatus.BASELINE
        assert second.status is PollStatus.DIFFED
        assert [(e.kind, e.subject_key, e.previous_rank, e.new_rank) for e in second.events] == [
            (EventKind.RANK_IMPROVED, "bob", 2, 1),
            (EventKind.RANK_DECREASED, "alice", 1, 2),
        ]
        assert all(e.system is ChallengeSystem.MONTHLY for e in second.events)
        assert second.events[0].details["score"] == "5/10"

    def test_higher_tier_outranks_more_achievements(self):
        engine = self._engine()
        measured = {
            "alice": _standing("alice", 8),
            "bob": _standing("bob", 6, AwardTier.BEATEN),
        }
        engine.poll_challenge(CHALLENGE, measured, SUBJECTS)

        snapshot = engine.store.get("standings:monthly:2025-06")
        assert snapshot.entries["bob"].community_rank == 1
        assert snapshot.entries["alice"].community_rank == 2

    def test_new_participant_enters_zone(self):
        engine = self._engine()
        engine.poll_challenge(CHALLENGE, _measured(alice=4, bob=2, carol=1), SUBJECTS)
        result = engine.poll_challenge(
            CHALLENGE, _measured(alice=4, bob=2, carol=1, dave=3), SUBJECTS
        )

        kinds = {(e.kind, e.subject_key) for e in result.events}
        assert (EventKind.ENTERED_TOP_K, "dave") in kinds

    def test_fall_out_of_small_zone(self):
        engine = self._engine(challenge_top_k=2)
        engine.poll_challenge(CHALLENGE, _measured(alice=4, bob=3, carol=1), SUBJECTS)
        result = engine.poll_challenge(CHALLENGE, _measured(alice=4, bob=3, carol=5), SUBJECTS)

        fell = [e for e in result.events if e.kind is EventKind.FELL_OUT_OF_TOP_K]
        assert [(e.subject_key, e.new_rank) for e in fell] == [("bob", 3)]

    def test_nothing_measured_keeps_baseline(self):
        engine = self._engine()
        engine.poll_challenge(CHALLENGE, _measured(alice=4), SUBJECTS)

        result = engine.poll_challenge(CHALLENGE, {}, SUBJECTS)

        assert result.status is PollStatus.FETCH_FAILED
        assert len(engine.store.get("standings:monthly:2025-06")) == 1

    def test_missing_subject_keeps_last_standing(self):
        engine = self._engine()
        engine.poll_challenge(CHALLENGE, _measured(alice=4, bob=2), SUBJECTS)
        result = engine.poll_challenge(CHALLENGE, _measured(bob=2), SUBJECTS)

        assert result.events == []
        assert engine.store.get("standings:monthly:2025-06").entries["alice"].community_rank == 1

    def test_implausible_shrink_is_gated(self):
        engine = self._engine()
        engine.poll_challenge(
            CHALLENGE, _measured(alice=4, bob=3, carol=2, dave=1), SUBJECTS
        )
        result = engine.poll_challenge(
            CHALLENGE, _measured(alice=4, bob=0, carol=0, dave=0), SUBJECTS
        )

        assert result.status is PollStatus.INCONSISTENT
        assert result.events == []
        assert engine.store.inconsistency_count("standings:monthly:2025-06") == 1

    def test_subject_leaving_roster_is_dropped(self):
        engine = self._engine()
        engine.poll_challenge(CHALLENGE, _measured(alice=4, bob=2), ["alice", "bob"])
        engine.poll_challenge(CHALLENGE, _measured(alice=4), ["alice"])
        assert set(engine.store.get("standings:monthly:2025-06").entries) == {"alice"}
