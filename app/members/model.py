"""
Carpool Platform - Member Model

A Member is a registered rider/driver. The trust and reliability layers only
ever read these records; they are written by profile edits, document
submissions and admin review.

Schema:
    (:User)-[:HAS_LICENSE]->(:DriverLicense)            // one per user
    (:User)-[:HAS_INSURANCE]->(:VehicleInsurance)       // zero or more
    (:User)-[:HAS_RELIABILITY]->(:ReliabilityScore)     // maintained externally
    (:User)-[:RESTRICTED_BY]->(:BookingRestriction)     // zero or more
    (:User)-[:SCORE_HISTORY]->(:ScoreRecord)
"""
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, Any, Dict
from enum import Enum


class LicenseStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class InsuranceStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REJECTED = "rejected"


class RestrictionType(str, Enum):
    TEMPORARY_BAN = "temporary_ban"
    WARNING = "warning"
    REVIEW_REQUIRED = "review_required"


def to_date(value: Any) -> Optional[date]:
    """Accept ISO strings, python dates or neo4j temporal values."""
    if value is None or value == "":
        return None
    if hasattr(value, "to_native"):
        value = value.to_native()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def to_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if hasattr(value, "to_native"):
        value = value.to_native()
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class Profile:
    id: str
    email: str = ""
    full_name: str = ""
    bio: str = ""

    # Verification flags
    email_verified: bool = False
    phone: Optional[str] = None
    phone_verified: bool = False
    profile_verified: bool = False       # face-verified photo
    id_verified: bool = False

    # Activity counters
    average_rating: float = 0.0
    total_rides_offered: int = 0
    total_rides_taken: int = 0
    rides_as_driver_completed: int = 0

    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    # Written by refresh
    trust_score: int = 0
    trust_score_updated_at: Optional[datetime] = None

    is_admin: bool = False

    @property
    def has_verified_phone(self) -> bool:
        return bool(self.phone) and self.phone_verified

    @property
    def completed_rides(self) -> int:
        return self.total_rides_offered + self.total_rides_taken

    def account_age_days(self, now: Optional[datetime] = None) -> int:
        if self.created_at is None:
            return 0
        now = now or datetime.now(timezone.utc)
        return max((now - self.created_at).days, 0)

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "Profile":
        return cls(
            id=node["id"],
            email=node.get("email") or "",
            full_name=node.get("full_name") or "",
            bio=node.get("bio") or "",
            email_verified=bool(node.get("email_verified", False)),
            phone=node.get("phone"),
            phone_verified=bool(node.get("phone_verified", False)),
            profile_verified=bool(node.get("profile_verified", False)),
            id_verified=bool(node.get("id_verified", False)),
            average_rating=float(node.get("average_rating") or 0.0),
            total_rides_offered=int(node.get("total_rides_offered") or 0),
            total_rides_taken=int(node.get("total_rides_taken") or 0),
            rides_as_driver_completed=int(node.get("rides_as_driver_completed") or 0),
            created_at=to_datetime(node.get("created_at")),
            deleted_at=to_datetime(node.get("deleted_at")),
            trust_score=int(node.get("trust_score") or 0),
            trust_score_updated_at=to_datetime(node.get("trust_score_updated_at")),
            is_admin=bool(node.get("is_admin", False)),
        )


@dataclass
class DriverLicense:
    user_id: str
    status: str = LicenseStatus.PENDING.value
    expiry_date: Optional[date] = None
    issuing_country: Optional[str] = None
    license_class: Optional[str] = None
    document_path: Optional[str] = None
    rejection_reason: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_node(cls, user_id: str, node: Dict[str, Any]) -> "DriverLicense":
        return cls(
            user_id=user_id,
            status=node.get("status") or LicenseStatus.PENDING.value,
            expiry_date=to_date(node.get("expiry_date")),
            issuing_country=node.get("issuing_country"),
            license_class=node.get("license_class"),
            document_path=node.get("document_path"),
            rejection_reason=node.get("rejection_reason"),
            updated_at=to_datetime(node.get("updated_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "status": self.status,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "issuing_country": self.issuing_country,
            "license_class": self.license_class,
            "document_path": self.document_path,
            "rejection_reason": self.rejection_reason,
        }


@dataclass
class VehicleInsurance:
    insurance_id: str
    user_id: str
    status: str = InsuranceStatus.PENDING.value
    provider: Optional[str] = None
    policy_number: Optional[str] = None
    expiry_date: Optional[date] = None
    document_path: Optional[str] = None

    @classmethod
    def from_node(cls, user_id: str, node: Dict[str, Any]) -> "VehicleInsurance":
        return cls(
            insurance_id=node["insurance_id"],
            user_id=user_id,
            status=node.get("status") or InsuranceStatus.PENDING.value,
            provider=node.get("provider"),
            policy_number=node.get("policy_number"),
            expiry_date=to_date(node.get("expiry_date")),
            document_path=node.get("document_path"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "insurance_id": self.insurance_id,
            "user_id": self.user_id,
            "status": self.status,
            "provider": self.provider,
            "policy_number": self.policy_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "document_path": self.document_path,
        }


@dataclass(frozen=True)
class ReliabilityRecord:
    """Precomputed by the cancellation workflow. Defaults are a brand-new member's."""
    reliability_score: int = 100
    total_rides: int = 0
    completed_rides: int = 0
    cancelled_rides: int = 0
    completion_ratio: float = 1.0
    cancellation_ratio: float = 0.0
    last_minute_cancellations: int = 0
    warnings_count: int = 0
    is_in_grace_period: bool = True
    grace_rides_remaining: int = 5

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "ReliabilityRecord":
        defaults = cls()
        return cls(
            reliability_score=int(node.get("reliability_score", defaults.reliability_score)),
            total_rides=int(node.get("total_rides") or 0),
            completed_rides=int(node.get("completed_rides") or 0),
            cancelled_rides=int(node.get("cancelled_rides") or 0),
            completion_ratio=float(node.get("completion_ratio", defaults.completion_ratio)),
            cancellation_ratio=float(node.get("cancellation_ratio", defaults.cancellation_ratio)),
            last_minute_cancellations=int(node.get("last_minute_cancellations") or 0),
            warnings_count=int(node.get("warnings_count") or 0),
            is_in_grace_period=bool(node.get("is_in_grace_period", defaults.is_in_grace_period)),
            grace_rides_remaining=int(node.get("grace_rides_remaining", defaults.grace_rides_remaining)),
        )


@dataclass(frozen=True)
class BookingRestriction:
    restriction_type: str
    reason: str
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool = True

    def in_force(self, now: datetime) -> bool:
        return self.is_active and (self.ends_at is None or self.ends_at > now)

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "BookingRestriction":
        return cls(
            restriction_type=node.get("restriction_type") or RestrictionType.WARNING.value,
            reason=node.get("reason") or "",
            starts_at=to_datetime(node.get("starts_at")),
            ends_at=to_datetime(node.get("ends_at")),
            is_active=bool(node.get("is_active", True)),
        )
