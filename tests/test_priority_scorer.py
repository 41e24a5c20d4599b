# tests/test_priority_scorer.py
"""Unit tests for admission and ranking scores."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import timedelta
from app.models import BookingPriority, BookingStatus, GroupRole
from app.services.priority_scorer import (
    build_priority_queue, calculate_ranking_score, calculate_user_priority,
    map_priority_score_to_enum, score_membership,
)
from factories import NOW, VEHICLE_ID, at, make_booking, make_lookup, make_member


class TestAdmissionScore:
    def test_share_is_floored_percentage(self):
        assert score_membership(0.29, GroupRole.MEMBER) == 29
        assert score_membership(0.505, GroupRole.MEMBER) == 50

    def test_admin_bonus(self):
        assert score_membership(0.25, GroupRole.ADMIN) == 75

    def test_non_member_scores_zero(self):
        lookup = make_lookup(make_member("user-a", 0.9))
        assert calculate_user_priority(lookup, "stranger", VEHICLE_ID) == 0

    def test_member_lookup(self):
        lookup = make_lookup(make_member("user-a", 0.6, GroupRole.ADMIN))
        assert calculate_user_priority(lookup, "user-a", VEHICLE_ID) == 110

    @pytest.mark.parametrize("score,expected", [
        (0, BookingPriority.LOW),
        (30, BookingPriority.LOW),
        (31, BookingPriority.NORMAL),
        (70, BookingPriority.NORMAL),
        (71, BookingPriority.HIGH),
        (150, BookingPriority.HIGH),
    ])
    def test_bucket_edges(self, score, expected):
        assert map_priority_score_to_enum(score) == expected

    def test_never_maps_to_emergency(self):
        assert map_priority_score_to_enum(10_000) != BookingPriority.EMERGENCY

    def test_priority_monotonic_in_share(self):
        shares = [i / 100 for i in range(0, 101)]
        for role in (GroupRole.MEMBER, GroupRole.ADMIN):
            priorities = [map_priority_score_to_enum(score_membership(s, role)) for s in shares]
            assert priorities == sorted(priorities)

    def test_admin_never_below_member_with_same_share(self):
        for i in range(0, 101):
            share = i / 100
            assert (map_priority_score_to_enum(score_membership(share, GroupRole.ADMIN))
                    >= map_priority_score_to_enum(score_membership(share, GroupRole.MEMBER)))


class TestRankingScore:
    def test_emergency_and_confirmed_bonuses(self):
        booking = make_booking(is_emergency=True, created_at=NOW)
        # 3 (Emergency) + 1000 + 100 (Confirmed) + 30 (created today)
        assert calculate_ranking_score(booking, NOW) == 1133

    def test_recency_decays_to_zero(self):
        fresh = make_booking(status=BookingStatus.PENDING_APPROVAL, created_at=NOW - timedelta(days=10))
        old = make_booking(status=BookingStatus.PENDING_APPROVAL, created_at=NOW - timedelta(days=45))
        assert calculate_ranking_score(fresh, NOW) == 1 + 20
        assert calculate_ranking_score(old, NOW) == 1

    def test_queue_ordering(self):
        lookup = make_lookup(make_member("user-a", 0.6), make_member("user-b", 0.3))
        low_share = make_booking(user_id="user-b", start=at(1, 9))
        high_share = make_booking(user_id="user-a", start=at(1, 11))
        emergency = make_booking(user_id="user-b", start=at(1, 13), is_emergency=True)
        early_same = make_booking(user_id="user-b", start=at(1, 8))

        queue = build_priority_queue([low_share, high_share, emergency, early_same], lookup, NOW)

        assert [e.booking for e in queue] == [emergency, high_share, early_same, low_share]
        assert queue[1].ownership_percentage == 0.6
