"""
Carpool - Trust Score Engine
Verification + activity scoring for ride-sharing members.

Trust Score = sum of eight capped categories (0-100):

    Email verification        (max 10)  verified email address
    Phone verification        (max 10)  number on file AND verified
    Profile photo             (max 15)  face-verified profile photo
    Driver license            (max 20)  verified and not expired
    Vehicle insurance         (max 15)  any active, unexpired policy
    Completed rides           (max 15)  1 point per ride
    Average rating            (max 10)  2 points per star
    Account age               (max 5)   1 point per full 30 days
    ─────────────────────────────────
    Total possible:             100

The engine is a pure function over a snapshot of facts. Nothing here talks to
the store. A fact that could not be fetched is passed in as a FetchFailure:
the categories it feeds score 0, are flagged unknown, and the whole result is
marked incomplete.
"""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, Dict, Any, List, Tuple, Union, Callable
from enum import Enum


# ── Enums ─────────────────────────────────────────

class CategoryStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL  = "partial"
    MISSING  = "missing"


class TrustTier(str, Enum):
    EXCELLENT       = "excellent"
    GOOD            = "good"
    BUILDING        = "building"
    GETTING_STARTED = "getting_started"


TIER_MESSAGES = {
    TrustTier.EXCELLENT: "Excellent! Your profile is highly trusted in the community.",
    TrustTier.GOOD: "Good work! Complete more verifications to increase your score.",
    TrustTier.BUILDING: "You're building trust. Add more verifications to improve.",
    TrustTier.GETTING_STARTED: "Get started by completing verifications and participating in rides.",
}


# ── Input Facts ───────────────────────────────────

@dataclass(frozen=True)
class FetchFailure:
    """Marks a fact that could not be read from the store."""
    source: str
    error: str = ""


@dataclass(frozen=True)
class LicenseFact:
    verified: bool
    expiry_date: Optional[date] = None


@dataclass(frozen=True)
class InsuranceFact:
    active: bool
    expiry_date: Optional[date] = None


@dataclass(frozen=True)
class TrustInputs:
    """
    Everything the engine knows about one member, fetched right before
    scoring. Any field may be a FetchFailure instead of a value.
    """
    email_verified: Union[bool, FetchFailure] = False
    phone_verified: Union[bool, FetchFailure] = False
    profile_photo_verified: Union[bool, FetchFailure] = False
    license: Union[LicenseFact, None, FetchFailure] = None
    insurance: Union[Tuple[InsuranceFact, ...], FetchFailure] = ()
    completed_ride_count: Union[int, FetchFailure] = 0
    average_rating: Union[float, FetchFailure] = 0.0
    account_age_days: Union[int, FetchFailure] = 0


# ── Category Scoring ──────────────────────────────

EMAIL_CAP = 10
PHONE_CAP = 10
PHOTO_CAP = 15
LICENSE_CAP = 20
INSURANCE_CAP = 15
RIDES_CAP = 15
RATING_CAP = 10
AGE_CAP = 5

DAYS_PER_MONTH = 30


def _clamp(raw: float, cap: int) -> int:
    return int(min(max(raw, 0), cap))


def score_email(s: TrustInputs, today: date) -> int:
    return _clamp(EMAIL_CAP if s.email_verified else 0, EMAIL_CAP)


def score_phone(s: TrustInputs, today: date) -> int:
    return _clamp(PHONE_CAP if s.phone_verified else 0, PHONE_CAP)


def score_profile_photo(s: TrustInputs, today: date) -> int:
    return _clamp(PHOTO_CAP if s.profile_photo_verified else 0, PHOTO_CAP)


def _unexpired(expiry: Optional[date], today: date) -> bool:
    return expiry is not None and expiry >= today


def score_driver_license(s: TrustInputs, today: date) -> int:
    lic = s.license
    valid = lic is not None and lic.verified and _unexpired(lic.expiry_date, today)
    return _clamp(LICENSE_CAP if valid else 0, LICENSE_CAP)


def score_vehicle_insurance(s: TrustInputs, today: date) -> int:
    covered = any(p.active and _unexpired(p.expiry_date, today) for p in s.insurance)
    return _clamp(INSURANCE_CAP if covered else 0, INSURANCE_CAP)


def score_completed_rides(s: TrustInputs, today: date) -> int:
    """1 point per completed ride."""
    return _clamp(s.completed_ride_count, RIDES_CAP)


def score_average_rating(s: TrustInputs, today: date) -> int:
    """2 points per star, halves round up (4.25 stars -> 9)."""
    if not math.isfinite(s.average_rating):
        return 0
    return _clamp(math.floor(s.average_rating * 2 + 0.5), RATING_CAP)


def score_account_age(s: TrustInputs, today: date) -> int:
    """1 point per full 30 days on the platform."""
    return _clamp(s.account_age_days // DAYS_PER_MONTH, AGE_CAP)


def _describe_rides(s: TrustInputs) -> str:
    return f"{s.completed_ride_count} rides completed (1 point each, max {RIDES_CAP})"


def _describe_rating(s: TrustInputs) -> str:
    return f"{s.average_rating:.1f} star rating (2 points per star)"


def _describe_age(s: TrustInputs) -> str:
    months = max(s.account_age_days // DAYS_PER_MONTH, 0)
    return f"{months} months active (1 point per month, max {AGE_CAP})"


@dataclass(frozen=True)
class Category:
    key: str
    label: str
    cap: int
    inputs: Tuple[str, ...]
    scorer: Callable[[TrustInputs, date], int]
    description: Union[str, Callable[[TrustInputs], str]]


CATEGORIES: Tuple[Category, ...] = (
    Category("email", "Email Verification", EMAIL_CAP,
             ("email_verified",), score_email, "Verified email address"),
    Category("phone", "Phone Verification", PHONE_CAP,
             ("phone_verified",), score_phone, "Phone verified"),
    Category("profile_photo", "Profile Photo", PHOTO_CAP,
             ("profile_photo_verified",), score_profile_photo, "Face-verified profile photo"),
    Category("driver_license", "Driver License", LICENSE_CAP,
             ("license",), score_driver_license, "Valid driver license verified"),
    Category("vehicle_insurance", "Vehicle Insurance", INSURANCE_CAP,
             ("insurance",), score_vehicle_insurance, "Active insurance on file"),
    Category("completed_rides", "Completed Rides", RIDES_CAP,
             ("completed_ride_count",), score_completed_rides, _describe_rides),
    Category("average_rating", "Average Rating", RATING_CAP,
             ("average_rating",), score_average_rating, _describe_rating),
    Category("account_age", "Account Age", AGE_CAP,
             ("account_age_days",), score_account_age, _describe_age),
)

MAX_SCORE = sum(c.cap for c in CATEGORIES)


# ── Result ────────────────────────────────────────

@dataclass(frozen=True)
class CategoryScore:
    key: str
    label: str
    earned: int
    cap: int
    status: CategoryStatus
    description: str
    unknown: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "earned": self.earned,
            "cap": self.cap,
            "status": self.status.value,
            "description": self.description,
            "unknown": self.unknown,
        }


@dataclass(frozen=True)
class TrustScoreResult:
    score: int
    categories: Tuple[CategoryScore, ...]
    tier: TrustTier
    unknown_categories: Tuple[str, ...] = field(default_factory=tuple)
    engine_version: str = "1.0.0"

    @property
    def is_complete(self) -> bool:
        return not self.unknown_categories

    @property
    def max_score(self) -> int:
        return sum(c.cap for c in self.categories)

    def category(self, key: str) -> CategoryScore:
        for c in self.categories:
            if c.key == key:
                return c
        raise KeyError(key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "max_score": self.max_score,
            "tier": self.tier.value,
            "tier_message": TIER_MESSAGES[self.tier],
            "is_complete": self.is_complete,
            "unknown_categories": list(self.unknown_categories),
            "categories": [c.to_dict() for c in self.categories],
            "engine_version": self.engine_version,
        }


def status_for(earned: int, cap: int) -> CategoryStatus:
    if earned <= 0:
        return CategoryStatus.MISSING
    if earned >= cap:
        return CategoryStatus.COMPLETE
    return CategoryStatus.PARTIAL


def tier_for(score: int) -> TrustTier:
    if score >= 80:
        return TrustTier.EXCELLENT
    if score >= 60:
        return TrustTier.GOOD
    if score >= 40:
        return TrustTier.BUILDING
    return TrustTier.GETTING_STARTED


def _failed_inputs(signals: TrustInputs, names: Tuple[str, ...]) -> List[FetchFailure]:
    return [getattr(signals, n) for n in names if isinstance(getattr(signals, n), FetchFailure)]


# ── Main Entry Point ──────────────────────────────

def compute_trust_score(signals: TrustInputs, today: Optional[date] = None) -> TrustScoreResult:
    """
    Score one member. Deterministic for a given (signals, today) pair.

    Each category is scored independently and clamped to [0, cap], so the
    total never leaves [0, MAX_SCORE] whatever the caller passes in.
    """
    if today is None:
        today = datetime.now(timezone.utc).date()

    scored: List[CategoryScore] = []
    unknown: List[str] = []

    for cat in CATEGORIES:
        if _failed_inputs(signals, cat.inputs):
            unknown.append(cat.key)
            scored.append(CategoryScore(
                key=cat.key,
                label=cat.label,
                earned=0,
                cap=cat.cap,
                status=CategoryStatus.MISSING,
                description="Could not be checked right now",
                unknown=True,
            ))
            continue

        earned = cat.scorer(signals, today)
        description = cat.description(signals) if callable(cat.description) else cat.description
        scored.append(CategoryScore(
            key=cat.key,
            label=cat.label,
            earned=earned,
            cap=cat.cap,
            status=status_for(earned, cat.cap),
            description=description,
        ))

    total = sum(c.earned for c in scored)
    return TrustScoreResult(
        score=total,
        categories=tuple(scored),
        tier=tier_for(total),
        unknown_categories=tuple(unknown),
    )
