"""
Carpool - Trust Badges
Earned/unearned badge list shown next to a member's trust score.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from app.members.model import Profile


@dataclass(frozen=True)
class TrustBadge:
    id: str
    name: str
    description: str
    icon: str
    earned: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "earned": self.earned,
        }


def months_between(start: datetime, end: datetime) -> int:
    """Calendar months, ignoring the day of month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def compute_badges(
    profile: Profile,
    reliability_score: int = 0,
    now: Optional[datetime] = None,
) -> List[TrustBadge]:
    now = now or datetime.now(timezone.utc)
    rating = profile.average_rating or 0.0
    rides = profile.completed_rides
    veteran = profile.created_at is not None and months_between(profile.created_at, now) >= 6

    return [
        TrustBadge("email_verified", "Email Verified",
                   "Email address has been verified", "mail-check",
                   profile.email_verified),
        TrustBadge("phone_verified", "Phone Verified",
                   "Phone number has been verified", "phone-check",
                   profile.has_verified_phone),
        TrustBadge("id_verified", "ID Verified",
                   "Government ID has been verified", "id-card",
                   profile.id_verified),
        TrustBadge("photo_verified", "Photo Verified",
                   "Profile photo verified with face detection", "camera-check",
                   profile.profile_verified),
        TrustBadge("trusted_member", "Trusted Member",
                   "Completed 10+ rides with good ratings", "shield-check",
                   rides >= 10 and rating >= 4.0),
        TrustBadge("veteran", "Community Veteran",
                   "Active member for over 6 months", "award",
                   veteran),
        TrustBadge("super_driver", "Super Driver",
                   "Completed 50+ rides as driver with 4.5+ rating", "star",
                   profile.rides_as_driver_completed >= 50 and rating >= 4.5),
        TrustBadge("reliable", "Highly Reliable",
                   "Reliability score above 90", "clock-check",
                   reliability_score >= 90),
    ]
