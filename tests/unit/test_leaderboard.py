"""Leaderboard ordering, competition ranking and prize tier mapping."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

from rewards.tournaments.leaderboard import rank_participants
from rewards.tournaments.prizes import plan_prizes, tier_for_rank
from rewards.tournaments.schemas import Prize, PrizeTier, RegistrationStatus, TournamentParticipant

START = datetime(2026, 3, 1, tzinfo=timezone.utc)


def p(user_id: str, score: int, registered_minutes: int = 0, **overrides) -> TournamentParticipant:
    return TournamentParticipant(
        tournament_id="t1",
        user_id=user_id,
        registered_at=START + timedelta(minutes=registered_minutes),
        score=score,
        **overrides,
    )


class TestRankParticipants:
    def test_competition_ranking(self):
        entries = rank_participants([p("a", 50), p("b", 40, 1), p("c", 40, 2), p("d", 10)])
        assert [(e.user_id, e.position, e.rank) for e in entries] == [
            ("a", 1, 1), ("b", 2, 2), ("c", 3, 2), ("d", 4, 4),
        ]

    def test_earlier_registration_wins_tie(self):
        entries = rank_participants([p("late", 30, 10), p("early", 30, 1)])
        assert [e.user_id for e in entries] == ["early", "late"]

    def test_user_id_breaks_identical_registration(self):
        entries = rank_participants([p("zed", 30), p("amy", 30)])
        assert [e.user_id for e in entries] == ["amy", "zed"]

    def test_excludes_disqualified_and_withdrawn(self):
        entries = rank_participants([
            p("a", 50),
            p("cheater", 90, is_disqualified=True),
            p("gone", 80, registration_status=RegistrationStatus.WITHDRAWN),
        ])
        assert [e.user_id for e in entries] == ["a"]

    def test_deterministic_under_shuffle(self):
        field = [p(f"u{i}", score=i % 4, registered_minutes=i % 3) for i in range(30)]
        expected = rank_participants(field)
        for seed in range(5):
            shuffled = field[:]
            random.Random(seed).shuffle(shuffled)
            assert rank_participants(shuffled) == expected

    def test_idempotent_under_noop_rescore(self):
        field = [p(f"u{i}", score=100 - i * 7, registered_minutes=i) for i in range(10)]
        first = rank_participants(field)
        ranks = {e.user_id: e.rank for e in first}
        ranked = [x.model_copy(update={"current_rank": ranks[x.user_id]}) for x in field]
        second = rank_participants(ranked)
        assert [(e.user_id, e.rank) for e in second] == [(e.user_id, e.rank) for e in first]
        assert all(e.rank_change == 0 for e in second)

    def test_rank_change_and_percentile(self):
        entries = rank_participants([p("a", 50, current_rank=3), p("b", 40, current_rank=1)])
        assert entries[0].rank_change == 2
        assert entries[1].rank_change == -1
        assert entries[0].percentile == 50.0


PRIZES = {
    PrizeTier.FIRST_PLACE: Prize(xp=1000, points=500, cash=50.0),
    PrizeTier.SECOND_PLACE: Prize(xp=500, points=250),
    PrizeTier.TOP_10: Prize(xp=100, points=50),
    PrizeTier.PARTICIPATION: Prize(xp=10),
}


class TestTierForRank:
    def test_podium(self):
        assert tier_for_rank(1, PRIZES) == PrizeTier.FIRST_PLACE
        assert tier_for_rank(2, PRIZES) == PrizeTier.SECOND_PLACE

    def test_missing_tier_falls_through(self):
        assert tier_for_rank(3, PRIZES) == PrizeTier.TOP_10

    def test_top_ten_boundary(self):
        assert tier_for_rank(10, PRIZES) == PrizeTier.TOP_10
        assert tier_for_rank(11, PRIZES) == PrizeTier.PARTICIPATION

    def test_no_tier_defined(self):
        assert tier_for_rank(50, {PrizeTier.FIRST_PLACE: Prize(xp=1)}) is None


class TestPlanPrizes:
    def test_ties_share_the_tier_of_their_rank(self):
        entries = rank_participants([p("a", 90), p("b", 90, 1), p("c", 80)])
        winners = plan_prizes(entries, PRIZES)
        assert [(w.user_id, w.rank, w.tier) for w in winners] == [
            ("a", 1, PrizeTier.FIRST_PLACE),
            ("b", 1, PrizeTier.FIRST_PLACE),
            ("c", 3, PrizeTier.TOP_10),
        ]
        assert winners[0].cash == 50.0
