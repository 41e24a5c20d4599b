# app/services/priority_scorer.py
"""
Priority scoring.

Two unrelated numbers live here:
  * the admission score (share% × 100 plus an admin bonus), bucketed into a
    BookingPriority and used by the conflict resolver;
  * the ranking score, used only to order the priority-queue report.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from app.models.booking import Booking, BookingPriority, BookingStatus
from app.models.group_member import GroupRole
from app.repositories.base import MembershipLookup
from app.utils.clock import utcnow

ADMIN_ROLE_BONUS = 50
LOW_PRIORITY_MAX_SCORE = 30
NORMAL_PRIORITY_MAX_SCORE = 70

EMERGENCY_RANK_BONUS = 1000
CONFIRMED_RANK_BONUS = 100
RECENCY_WINDOW_DAYS = 30


def calculate_user_priority(members: MembershipLookup, user_id: str, vehicle_id: str) -> int:
    """Raw admission score for a user on a vehicle; 0 when they are not a member."""
    member = members.get_member(user_id, vehicle_id)
    if member is None:
        return 0
    return score_membership(member.share_percentage, member.role)


def score_membership(share_percentage: float, role) -> int:
    # round first: 0.29 * 100 == 28.999999999999996
    base_priority = math.floor(round((share_percentage or 0) * 100, 6))
    role_priority = ADMIN_ROLE_BONUS if role == GroupRole.ADMIN else 0
    return base_priority + role_priority


def map_priority_score_to_enum(score: int) -> BookingPriority:
    # Emergency is never produced here; it is only set on flagged bookings
    if score <= LOW_PRIORITY_MAX_SCORE:
        return BookingPriority.LOW
    if score <= NORMAL_PRIORITY_MAX_SCORE:
        return BookingPriority.NORMAL
    return BookingPriority.HIGH


def calculate_ranking_score(booking: Booking, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    score = int(booking.priority)
    if booking.is_emergency:
        score += EMERGENCY_RANK_BONUS
    if booking.status == BookingStatus.CONFIRMED:
        score += CONFIRMED_RANK_BONUS
    days_since_created = (now - booking.created_at).days
    score += max(0, RECENCY_WINDOW_DAYS - days_since_created)
    return score


@dataclass
class PriorityQueueEntry:
    booking: Booking
    ranking_score: int
    ownership_percentage: float


def build_priority_queue(bookings: Iterable[Booking], members: MembershipLookup,
                         now: Optional[datetime] = None) -> list[PriorityQueueEntry]:
    """Display ordering: ranking score desc, ownership share desc, start asc."""
    now = now or utcnow()
    entries = []
    for booking in bookings:
        member = members.get_member(booking.user_id, booking.vehicle_id)
        entries.append(PriorityQueueEntry(
            booking=booking,
            ranking_score=calculate_ranking_score(booking, now),
            ownership_percentage=member.share_percentage if member else 0.0,
        ))
    entries.sort(key=lambda e: (-e.ranking_score, -e.ownership_percentage, e.booking.start_at))
    return entries
