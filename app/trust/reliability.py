"""
Carpool - Reliability Reader

The reliability score itself is maintained by the cancellation workflow
(completions add points, cancellations subtract them, warnings and
restrictions are issued there). This module never changes it: it formats the
stored aggregate for display and decides booking eligibility from it.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Sequence

from app.members.model import ReliabilityRecord, BookingRestriction

MIN_RELIABILITY_TO_BOOK = 30


def reliability_label(score: int) -> str:
    if score >= 90:
        return "Excellent"
    if score >= 70:
        return "Good"
    if score >= 50:
        return "Fair"
    return "Needs Improvement"


@dataclass(frozen=True)
class RestrictionNotice:
    title: str
    restriction_type: str
    reason: str
    ends_on: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "restriction_type": self.restriction_type,
            "reason": self.reason,
            "ends_on": self.ends_on,
        }


@dataclass(frozen=True)
class ReliabilityView:
    score: int
    label: str
    total_rides: int
    completed_rides: int
    cancelled_rides: int
    last_minute_cancellations: int
    completion_pct: float
    cancellation_pct: float
    has_record: bool = True
    grace_period: Optional[Dict[str, Any]] = None
    warning: Optional[Dict[str, Any]] = None
    restrictions: List[RestrictionNotice] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "label": self.label,
            "has_record": self.has_record,
            "total_rides": self.total_rides,
            "completed_rides": self.completed_rides,
            "cancelled_rides": self.cancelled_rides,
            "last_minute_cancellations": self.last_minute_cancellations,
            "completion_pct": self.completion_pct,
            "cancellation_pct": self.cancellation_pct,
            "grace_period": self.grace_period,
            "warning": self.warning,
            "restrictions": [r.to_dict() for r in self.restrictions],
        }


@dataclass(frozen=True)
class BookingEligibility:
    is_eligible: bool
    reliability_score: int
    active_restrictions: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_eligible": self.is_eligible,
            "reliability_score": self.reliability_score,
            "active_restrictions": self.active_restrictions,
            "reason": self.reason,
        }


def _pct(ratio: float) -> float:
    return round(ratio * 100, 1)


def describe_restriction(r: BookingRestriction) -> RestrictionNotice:
    return RestrictionNotice(
        title=r.restriction_type.replace("_", " ").title(),
        restriction_type=r.restriction_type,
        reason=r.reason,
        ends_on=r.ends_at.date().isoformat() if r.ends_at else None,
    )


def format_reliability(
    record: Optional[ReliabilityRecord],
    restrictions: Sequence[BookingRestriction] = (),
    now: Optional[datetime] = None,
) -> ReliabilityView:
    """
    Project a stored reliability aggregate into a display structure.
    A member without a record is shown with new-member defaults.
    """
    now = now or datetime.now(timezone.utc)
    has_record = record is not None
    rec = record or ReliabilityRecord()

    grace = None
    if rec.is_in_grace_period:
        grace = {
            "grace_rides_remaining": rec.grace_rides_remaining,
            "message": (
                f"You have {rec.grace_rides_remaining} grace rides remaining "
                "with reduced penalties for cancellations."
            ),
        }

    warning = None
    if rec.warnings_count > 0:
        plural = "s" if rec.warnings_count > 1 else ""
        warning = {
            "warnings_count": rec.warnings_count,
            "title": f"{rec.warnings_count} Active Warning{plural}",
            "message": (
                "Please be mindful of cancellations. Frequent cancellations "
                "may result in temporary restrictions."
            ),
        }

    return ReliabilityView(
        score=rec.reliability_score,
        label=reliability_label(rec.reliability_score),
        total_rides=rec.total_rides,
        completed_rides=rec.completed_rides,
        cancelled_rides=rec.cancelled_rides,
        last_minute_cancellations=rec.last_minute_cancellations,
        completion_pct=_pct(rec.completion_ratio),
        cancellation_pct=_pct(rec.cancellation_ratio),
        has_record=has_record,
        grace_period=grace,
        warning=warning,
        restrictions=[describe_restriction(r) for r in restrictions if r.in_force(now)],
    )


def check_booking_eligibility(
    record: Optional[ReliabilityRecord],
    restrictions: Sequence[BookingRestriction] = (),
    now: Optional[datetime] = None,
) -> BookingEligibility:
    """Restrictions win over the score threshold; unknown members may book."""
    now = now or datetime.now(timezone.utc)

    if record is None:
        return BookingEligibility(True, ReliabilityRecord().reliability_score, 0, "New user - eligible")

    in_force = [r for r in restrictions if r.in_force(now)]
    if in_force:
        reasons = "; ".join(r.reason for r in in_force)
        return BookingEligibility(
            False, record.reliability_score, len(in_force), f"Active restrictions: {reasons}",
        )

    if record.reliability_score < MIN_RELIABILITY_TO_BOOK:
        return BookingEligibility(
            False, record.reliability_score, 0,
            f"Reliability score too low (minimum {MIN_RELIABILITY_TO_BOOK} required)",
        )

    return BookingEligibility(True, record.reliability_score, 0, "Eligible to book")
