"""
Carpool - Scoring Pipeline

Every trust score request flows through here:

    Request → Cache Check → [Fetch Facts] → Score → Cache → (Refresh: Persist) → Response

The pipeline handles:
    - Cache-first reads, with a per-member compute lock
    - Concurrent fact fetches (profile, license, insurance), each with a timeout
    - Turning a failed fetch into an explicit FetchFailure input instead of a zero
    - Persisting refreshed scores onto the profile and into score history

Failure behaviour:
    If Redis is down      → compute every time.
    If one fetch fails    → score with the rest, result marked incomplete.
    If the member is gone → MemberNotFoundError reaches the caller.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple, Union, Callable

import structlog

from app.config import settings
from app.compute.cache import ScoreCache
from app.compute.persistence import ScorePersistence
from app.members import store
from app.members.model import (
    Profile, DriverLicense, VehicleInsurance, ReliabilityRecord, BookingRestriction,
    LicenseStatus, InsuranceStatus,
)
from app.trust.engine import (
    TrustInputs, LicenseFact, InsuranceFact, FetchFailure, compute_trust_score,
)

logger = structlog.get_logger()

# Singleton instances (initialized on first use)
_cache: Optional[ScoreCache] = None
_persistence: Optional[ScorePersistence] = None


def get_cache() -> ScoreCache:
    global _cache
    if _cache is None:
        _cache = ScoreCache()
    return _cache


def get_persistence() -> ScorePersistence:
    global _persistence
    if _persistence is None:
        _persistence = ScorePersistence()
    return _persistence


class ScoreIncompleteError(Exception):
    """Refusing to persist a score computed from partial facts."""

    def __init__(self, user_id: str, unknown_categories: List[str]):
        self.user_id = user_id
        self.unknown_categories = unknown_categories
        super().__init__(f"Score for {user_id} is incomplete: {', '.join(unknown_categories)}")


# =============================================
# FACT FETCHING
# =============================================

async def _fetch(source: str, fn: Callable, user_id: str):
    """
    Run a blocking store read in a worker thread. Store errors and timeouts
    come back as a FetchFailure; a missing member is re-raised.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(fn, user_id),
            timeout=settings.FETCH_TIMEOUT_SECONDS,
        )
    except store.MemberNotFoundError:
        raise
    except asyncio.TimeoutError:
        logger.warning("fact_fetch_failed", source=source, user_id=user_id, error="timeout")
        return FetchFailure(source, "timeout")
    except Exception as e:
        logger.warning("fact_fetch_failed", source=source, user_id=user_id, error=str(e))
        return FetchFailure(source, str(e)[:200])


def license_fact(lic: Optional[DriverLicense]) -> Optional[LicenseFact]:
    if lic is None:
        return None
    return LicenseFact(verified=lic.status == LicenseStatus.VERIFIED.value, expiry_date=lic.expiry_date)


def insurance_facts(policies: List[VehicleInsurance]) -> Tuple[InsuranceFact, ...]:
    return tuple(
        InsuranceFact(active=p.status == InsuranceStatus.ACTIVE.value, expiry_date=p.expiry_date)
        for p in policies
    )


def build_inputs(
    profile: Union[Profile, FetchFailure],
    lic: Union[DriverLicense, None, FetchFailure],
    policies: Union[List[VehicleInsurance], FetchFailure],
    now: Optional[datetime] = None,
) -> TrustInputs:
    """Map store records onto the engine's input snapshot."""
    now = now or datetime.now(timezone.utc)

    if isinstance(profile, FetchFailure):
        profile_fields = dict.fromkeys(
            ("email_verified", "phone_verified", "profile_photo_verified",
             "completed_ride_count", "average_rating", "account_age_days"),
            profile,
        )
    else:
        profile_fields = {
            "email_verified": profile.email_verified,
            "phone_verified": profile.has_verified_phone,
            "profile_photo_verified": profile.profile_verified,
            "completed_ride_count": profile.completed_rides,
            "average_rating": profile.average_rating,
            "account_age_days": profile.account_age_days(now),
        }

    return TrustInputs(
        license=lic if isinstance(lic, FetchFailure) else license_fact(lic),
        insurance=policies if isinstance(policies, FetchFailure) else insurance_facts(policies),
        **profile_fields,
    )


async def gather_inputs(user_id: str) -> TrustInputs:
    """Fetch the three fact sources concurrently."""
    profile, lic, policies = await asyncio.gather(
        _fetch("profile", store.get_profile, user_id),
        _fetch("driver_license", store.get_driver_license, user_id),
        _fetch("vehicle_insurance", store.list_insurance, user_id),
    )
    return build_inputs(profile, lic, policies)


# =============================================
# THE PIPELINE
# =============================================

async def compute_member_score(user_id: str, force_refresh: bool = False) -> Dict[str, Any]:
    """
    Main entry point for a member's trust score.

    Returns the engine result as a dict plus user_id, calculated_at and a
    _pipeline block describing where the answer came from.
    """
    pipeline_start = time.time()
    cache = get_cache()

    if not force_refresh:
        cached = cache.get(user_id)
        if cached:
            cached["_pipeline"] = {
                "source": "cache",
                "pipeline_time_ms": round((time.time() - pipeline_start) * 1000, 2),
            }
            return cached

    lock_acquired = cache.acquire_lock(user_id)
    if not lock_acquired and not force_refresh:
        # Someone else is computing this member right now
        await asyncio.sleep(0.5)
        cached = cache.get(user_id)
        if cached:
            cached["_pipeline"] = {"source": "cache_after_lock_wait"}
            return cached

    try:
        inputs = await gather_inputs(user_id)
        trust = compute_trust_score(inputs)

        result = trust.to_dict()
        result["user_id"] = user_id
        result["calculated_at"] = datetime.now(timezone.utc).isoformat()

        cache.set(user_id, result, incomplete=not trust.is_complete)

        pipeline_ms = round((time.time() - pipeline_start) * 1000, 2)
        logger.info(
            "score_computed",
            user_id=user_id,
            score=trust.score,
            tier=trust.tier.value,
            is_complete=trust.is_complete,
            pipeline_ms=pipeline_ms,
        )
        result["_pipeline"] = {"source": "computed", "pipeline_time_ms": pipeline_ms}
        return result

    finally:
        if lock_acquired:
            cache.release_lock(user_id)


async def refresh_member_score(user_id: str) -> Dict[str, Any]:
    """
    Recompute from fresh facts and persist the result onto the profile and
    into score history. Partial results are never persisted.
    """
    result = await compute_member_score(user_id, force_refresh=True)
    if not result["is_complete"]:
        raise ScoreIncompleteError(user_id, result["unknown_categories"])

    score_id = await asyncio.to_thread(get_persistence().save_score, user_id, result)

    result["score_id"] = score_id
    result["persisted"] = True
    return result


async def score_history(user_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    limit = limit or settings.SCORE_HISTORY_LIMIT
    return await asyncio.to_thread(get_persistence().get_score_history, user_id, limit)


def invalidate_member(user_id: str) -> None:
    """Drop the cached score so the next read recomputes."""
    get_cache().invalidate(user_id)


async def rescore_member(user_id: str) -> Optional[int]:
    """
    Called after any write that feeds the trust score: drop the cached score,
    then recompute and persist so the profile's trust_score stays current.
    Best effort; the write that triggered it has already succeeded.
    """
    invalidate_member(user_id)
    try:
        result = await refresh_member_score(user_id)
    except (ScoreIncompleteError, store.StoreUnavailableError, store.MemberNotFoundError) as e:
        logger.warning("rescore_skipped", user_id=user_id, reason=type(e).__name__, error=str(e))
        return None
    return result["score"]


# =============================================
# RELIABILITY
# =============================================

async def load_reliability(user_id: str) -> Tuple[Optional[ReliabilityRecord], List[BookingRestriction]]:
    """Reliability aggregate + active restrictions, fetched concurrently."""
    record, restrictions = await asyncio.gather(
        asyncio.to_thread(store.get_reliability, user_id),
        asyncio.to_thread(store.list_active_restrictions, user_id),
    )
    return record, restrictions


# =============================================
# PIPELINE STATUS
# =============================================

def pipeline_status() -> Dict[str, Any]:
    return {"cache": get_cache().stats()}


def shutdown():
    """Clean shutdown of pipeline resources."""
    global _cache, _persistence
    if _cache:
        _cache.close()
    _cache = None
    _persistence = None
    logger.info("pipeline_shutdown")
