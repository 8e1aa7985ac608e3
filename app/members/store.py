"""
Carpool - Member Store

Every read and write the trust layer makes against Neo4j. Functions here are
blocking; async callers run them in a worker thread.

Reads return model objects. Missing optional records come back as None or an
empty list; a missing (or soft-deleted) profile raises MemberNotFoundError.
Driver errors are wrapped in StoreUnavailableError.
"""
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any

import structlog

from app.db.neo4j import get_session
from app.members.model import (
    Profile, DriverLicense, VehicleInsurance, ReliabilityRecord, BookingRestriction,
    LicenseStatus, InsuranceStatus,
)

logger = structlog.get_logger()


class MemberNotFoundError(Exception):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Member {user_id} not found")


class StoreUnavailableError(Exception):
    pass


VERIFICATION_FLAGS = ("email_verified", "phone_verified", "profile_verified", "id_verified")


@contextmanager
def _session(operation: str, user_id: str = ""):
    try:
        with get_session() as session:
            yield session
    except MemberNotFoundError:
        raise
    except Exception as e:
        logger.error("store_operation_failed", operation=operation, user_id=user_id, error=str(e))
        raise StoreUnavailableError(f"{operation} failed: {e}") from e


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================
# READS
# =============================================

def get_profile(user_id: str) -> Profile:
    with _session("get_profile", user_id) as session:
        record = session.run("""
            MATCH (u:User {id: $user_id})
            WHERE u.deleted_at IS NULL
            RETURN u {.*} as user
        """, user_id=user_id).single()

    if not record:
        raise MemberNotFoundError(user_id)
    return Profile.from_node(dict(record["user"]))


def get_driver_license(user_id: str) -> Optional[DriverLicense]:
    with _session("get_driver_license", user_id) as session:
        record = session.run("""
            MATCH (:User {id: $user_id})-[:HAS_LICENSE]->(l:DriverLicense)
            RETURN l {.*} as license
            LIMIT 1
        """, user_id=user_id).single()

    if not record:
        return None
    return DriverLicense.from_node(user_id, dict(record["license"]))


def list_insurance(user_id: str) -> List[VehicleInsurance]:
    with _session("list_insurance", user_id) as session:
        result = session.run("""
            MATCH (:User {id: $user_id})-[:HAS_INSURANCE]->(i:VehicleInsurance)
            RETURN i {.*} as insurance
            ORDER BY i.expiry_date DESC
        """, user_id=user_id)
        return [VehicleInsurance.from_node(user_id, dict(r["insurance"])) for r in result]


def get_reliability(user_id: str) -> Optional[ReliabilityRecord]:
    with _session("get_reliability", user_id) as session:
        record = session.run("""
            MATCH (:User {id: $user_id})-[:HAS_RELIABILITY]->(r:ReliabilityScore)
            RETURN r {.*} as reliability
        """, user_id=user_id).single()

    if not record:
        return None
    return ReliabilityRecord.from_node(dict(record["reliability"]))


def list_active_restrictions(user_id: str) -> List[BookingRestriction]:
    with _session("list_active_restrictions", user_id) as session:
        result = session.run("""
            MATCH (:User {id: $user_id})-[:RESTRICTED_BY]->(b:BookingRestriction)
            WHERE b.is_active = true
            RETURN b {.*} as restriction
            ORDER BY b.created_at DESC
        """, user_id=user_id)
        return [BookingRestriction.from_node(dict(r["restriction"])) for r in result]


# =============================================
# WRITES
# =============================================

def upsert_driver_license(
    user_id: str,
    expiry_date: date,
    issuing_country: Optional[str] = None,
    license_class: Optional[str] = None,
    document_path: Optional[str] = None,
) -> DriverLicense:
    """Create or resubmit the member's license. Resubmission goes back to pending."""
    with _session("upsert_driver_license", user_id) as session:
        record = session.run("""
            MATCH (u:User {id: $user_id})
            WHERE u.deleted_at IS NULL
            MERGE (u)-[:HAS_LICENSE]->(l:DriverLicense {user_id: $user_id})
            SET l.status = $status,
                l.expiry_date = $expiry_date,
                l.issuing_country = $issuing_country,
                l.license_class = $license_class,
                l.document_path = coalesce($document_path, l.document_path),
                l.rejection_reason = null,
                l.updated_at = $now
            RETURN l {.*} as license
        """,
            user_id=user_id,
            status=LicenseStatus.PENDING.value,
            expiry_date=expiry_date.isoformat(),
            issuing_country=issuing_country,
            license_class=license_class,
            document_path=document_path,
            now=_now_iso(),
        ).single()

    if not record:
        raise MemberNotFoundError(user_id)
    logger.info("license_submitted", user_id=user_id)
    return DriverLicense.from_node(user_id, dict(record["license"]))


def add_insurance(
    user_id: str,
    expiry_date: date,
    provider: Optional[str] = None,
    policy_number: Optional[str] = None,
    document_path: Optional[str] = None,
) -> VehicleInsurance:
    insurance_id = f"ins_{uuid.uuid4().hex[:16]}"
    with _session("add_insurance", user_id) as session:
        record = session.run("""
            MATCH (u:User {id: $user_id})
            WHERE u.deleted_at IS NULL
            CREATE (u)-[:HAS_INSURANCE]->(i:VehicleInsurance {
                insurance_id: $insurance_id,
                user_id: $user_id,
                status: $status,
                provider: $provider,
                policy_number: $policy_number,
                expiry_date: $expiry_date,
                document_path: $document_path,
                created_at: $now
            })
            RETURN i {.*} as insurance
        """,
            user_id=user_id,
            insurance_id=insurance_id,
            status=InsuranceStatus.PENDING.value,
            provider=provider,
            policy_number=policy_number,
            expiry_date=expiry_date.isoformat(),
            document_path=document_path,
            now=_now_iso(),
        ).single()

    if not record:
        raise MemberNotFoundError(user_id)
    logger.info("insurance_submitted", user_id=user_id, insurance_id=insurance_id)
    return VehicleInsurance.from_node(user_id, dict(record["insurance"]))


def review_driver_license(
    user_id: str,
    status: LicenseStatus,
    rejection_reason: Optional[str] = None,
) -> DriverLicense:
    with _session("review_driver_license", user_id) as session:
        record = session.run("""
            MATCH (:User {id: $user_id})-[:HAS_LICENSE]->(l:DriverLicense)
            SET l.status = $status,
                l.rejection_reason = $rejection_reason,
                l.updated_at = $now
            RETURN l {.*} as license
        """,
            user_id=user_id,
            status=status.value,
            rejection_reason=rejection_reason if status == LicenseStatus.REJECTED else None,
            now=_now_iso(),
        ).single()

    if not record:
        raise MemberNotFoundError(user_id)
    logger.info("license_reviewed", user_id=user_id, status=status.value)
    return DriverLicense.from_node(user_id, dict(record["license"]))


def review_insurance(insurance_id: str, status: InsuranceStatus) -> VehicleInsurance:
    with _session("review_insurance") as session:
        record = session.run("""
            MATCH (i:VehicleInsurance {insurance_id: $insurance_id})
            SET i.status = $status,
                i.updated_at = $now
            RETURN i {.*} as insurance
        """, insurance_id=insurance_id, status=status.value, now=_now_iso()).single()

    if not record:
        raise MemberNotFoundError(insurance_id)
    node = dict(record["insurance"])
    logger.info("insurance_reviewed", insurance_id=insurance_id, status=status.value)
    return VehicleInsurance.from_node(node["user_id"], node)


def update_verification_flags(user_id: str, flags: Dict[str, bool]) -> Profile:
    unknown = set(flags) - set(VERIFICATION_FLAGS)
    if unknown:
        raise ValueError(f"Unknown verification flags: {sorted(unknown)}")

    with _session("update_verification_flags", user_id) as session:
        record = session.run("""
            MATCH (u:User {id: $user_id})
            WHERE u.deleted_at IS NULL
            SET u += $flags,
                u.updated_at = $now
            RETURN u {.*} as user
        """, user_id=user_id, flags=flags, now=_now_iso()).single()

    if not record:
        raise MemberNotFoundError(user_id)
    logger.info("verification_flags_updated", user_id=user_id, flags=sorted(flags))
    return Profile.from_node(dict(record["user"]))


def update_phone(user_id: str, phone: Optional[str]) -> Profile:
    """
    Set or clear the member's phone number. A changed number has not been
    verified, so phone_verified drops back to false.
    """
    phone = phone or None
    with _session("update_phone", user_id) as session:
        record = session.run("""
            MATCH (u:User {id: $user_id})
            WHERE u.deleted_at IS NULL
            WITH u, coalesce(u.phone, '') <> coalesce($phone, '') AS changed
            SET u.phone = $phone,
                u.phone_verified = CASE WHEN changed THEN false ELSE coalesce(u.phone_verified, false) END,
                u.updated_at = $now
            RETURN u {.*} as user, changed
        """, user_id=user_id, phone=phone, now=_now_iso()).single()

    if not record:
        raise MemberNotFoundError(user_id)
    logger.info("phone_updated", user_id=user_id, changed=record["changed"], cleared=phone is None)
    return Profile.from_node(dict(record["user"]))
