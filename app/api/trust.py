"""
Carpool - Trust & Reliability API

Public endpoints (no auth):
    GET  /v1/trust/health                - Health check + cache status
    POST /v1/trust/calculate             - Score posted facts (rate-limited)

Authenticated endpoints (JWT):
    GET  /v1/trust/me                    - Your trust score + breakdown
    GET  /v1/trust/users/{user_id}       - A member's trust score + breakdown
    POST /v1/trust/refresh               - Recompute and persist your score
    GET  /v1/trust/history/{user_id}     - Persisted score history
    GET  /v1/trust/badges/{user_id}      - Trust badges

    GET  /v1/reliability/me              - Your reliability view
    GET  /v1/reliability/users/{user_id} - A member's reliability view
    GET  /v1/reliability/eligibility     - Can you book a ride right now?
"""
import asyncio
from typing import Optional, List
from datetime import date, datetime, timezone

from fastapi import APIRouter, HTTPException, Depends, Query, Request
from pydantic import BaseModel, Field
import structlog

from app.security import require_auth
from app.members import store
from app.compute import pipeline
from app.trust.engine import TrustInputs, LicenseFact, InsuranceFact, compute_trust_score
from app.trust.reliability import format_reliability, check_booking_eligibility
from app.trust.badges import compute_badges
from app.rate_limit import rate_limit_calculate

logger = structlog.get_logger()


# =============================================
# REQUEST/RESPONSE MODELS
# =============================================

class LicenseInput(BaseModel):
    verified: bool = False
    expiry_date: Optional[date] = None


class InsuranceInput(BaseModel):
    active: bool = False
    expiry_date: Optional[date] = None


class CalculateRequest(BaseModel):
    """Facts for a what-if calculation. Nothing is read from or written to the store."""
    email_verified: bool = False
    phone_verified: bool = False
    profile_photo_verified: bool = False
    license: Optional[LicenseInput] = None
    insurance: List[InsuranceInput] = Field(default_factory=list, max_length=20)
    completed_ride_count: int = Field(0, ge=0)
    average_rating: float = Field(0.0, ge=0.0, le=5.0)
    account_age_days: int = Field(0, ge=0)
    today: Optional[date] = None

    def to_inputs(self) -> TrustInputs:
        return TrustInputs(
            email_verified=self.email_verified,
            phone_verified=self.phone_verified,
            profile_photo_verified=self.profile_photo_verified,
            license=LicenseFact(self.license.verified, self.license.expiry_date) if self.license else None,
            insurance=tuple(InsuranceFact(p.active, p.expiry_date) for p in self.insurance),
            completed_ride_count=self.completed_ride_count,
            average_rating=self.average_rating,
            account_age_days=self.account_age_days,
        )


class CategoryResponse(BaseModel):
    key: str
    label: str
    earned: int
    cap: int
    status: str
    description: str
    unknown: bool = False


class TrustScoreResponse(BaseModel):
    score: int
    max_score: int
    tier: str
    tier_message: str
    is_complete: bool
    unknown_categories: List[str]
    categories: List[CategoryResponse]
    engine_version: str
    user_id: Optional[str] = None
    calculated_at: Optional[str] = None
    score_id: Optional[str] = None
    persisted: bool = False


class ScoreHistoryItem(BaseModel):
    score_id: str
    score: int
    tier: Optional[str] = None
    is_complete: bool = True
    calculated_at: Optional[str] = None


class ScoreHistoryResponse(BaseModel):
    user_id: str
    history: List[ScoreHistoryItem]
    total: int


class BadgeResponse(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    earned: bool


class BadgesResponse(BaseModel):
    user_id: str
    badges: List[BadgeResponse]
    earned_count: int


class RestrictionResponse(BaseModel):
    title: str
    restriction_type: str
    reason: str
    ends_on: Optional[str] = None


class ReliabilityResponse(BaseModel):
    user_id: str
    score: int
    label: str
    has_record: bool
    total_rides: int
    completed_rides: int
    cancelled_rides: int
    last_minute_cancellations: int
    completion_pct: float
    cancellation_pct: float
    grace_period: Optional[dict] = None
    warning: Optional[dict] = None
    restrictions: List[RestrictionResponse]


class EligibilityResponse(BaseModel):
    user_id: str
    is_eligible: bool
    reliability_score: int
    active_restrictions: int
    reason: str


# =============================================
# ERROR MAPPING
# =============================================

def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, store.MemberNotFoundError):
        return HTTPException(status_code=404, detail=f"Member {e.user_id} not found")
    if isinstance(e, pipeline.ScoreIncompleteError):
        return HTTPException(
            status_code=503,
            detail={
                "error": "score_incomplete",
                "message": "Some facts could not be checked right now. Try again shortly.",
                "unknown_categories": e.unknown_categories,
            },
        )
    return HTTPException(status_code=503, detail="Member store unavailable")


_MAPPED = (store.MemberNotFoundError, store.StoreUnavailableError, pipeline.ScoreIncompleteError)


# =============================================
# TRUST API ROUTES
# =============================================

trust_router = APIRouter(prefix="/v1/trust", tags=["trust"])


@trust_router.get("/health")
async def trust_health():
    """Health check for the Trust API."""
    return {
        "status": "healthy",
        "service": "carpool-trust-api",
        "version": "1.0.0",
        "pipeline": pipeline.pipeline_status(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@trust_router.post("/calculate", response_model=TrustScoreResponse)
async def calculate(request: Request, data: CalculateRequest):
    """
    Score a set of facts without touching any member record.
    Used by the profile editor to preview what a verification is worth.
    """
    await rate_limit_calculate(request)
    result = compute_trust_score(data.to_inputs(), today=data.today)
    return result.to_dict()


@trust_router.get("/me", response_model=TrustScoreResponse)
async def my_trust_score(user: dict = Depends(require_auth)):
    try:
        return await pipeline.compute_member_score(user["id"])
    except _MAPPED as e:
        raise _http_error(e)


@trust_router.get("/users/{user_id}", response_model=TrustScoreResponse)
async def member_trust_score(user_id: str, user: dict = Depends(require_auth)):
    try:
        return await pipeline.compute_member_score(user_id)
    except _MAPPED as e:
        raise _http_error(e)


@trust_router.post("/refresh", response_model=TrustScoreResponse)
async def refresh_trust_score(user: dict = Depends(require_auth)):
    """Recompute from fresh facts and persist onto your profile."""
    try:
        result = await pipeline.refresh_member_score(user["id"])
    except _MAPPED as e:
        raise _http_error(e)
    logger.info("score_refreshed", user_id=user["id"], score=result["score"])
    return result


@trust_router.get("/history/{user_id}", response_model=ScoreHistoryResponse)
async def trust_history(
    user_id: str,
    limit: int = Query(default=30, ge=1, le=100),
    user: dict = Depends(require_auth),
):
    try:
        await asyncio.to_thread(store.get_profile, user_id)
        history = await pipeline.score_history(user_id, limit=limit)
    except _MAPPED as e:
        raise _http_error(e)

    return ScoreHistoryResponse(
        user_id=user_id,
        history=[
            ScoreHistoryItem(
                score_id=h.get("score_id", ""),
                score=h.get("score", 0),
                tier=h.get("tier"),
                is_complete=h.get("is_complete", True),
                calculated_at=h.get("calculated_at"),
            )
            for h in history
        ],
        total=len(history),
    )


@trust_router.get("/badges/{user_id}", response_model=BadgesResponse)
async def trust_badges(user_id: str, user: dict = Depends(require_auth)):
    try:
        profile, record = await asyncio.gather(
            asyncio.to_thread(store.get_profile, user_id),
            asyncio.to_thread(store.get_reliability, user_id),
        )
    except _MAPPED as e:
        raise _http_error(e)

    # No reliability history yet means nothing to be reliable about.
    reliability_score = record.reliability_score if record else 0
    badges = compute_badges(profile, reliability_score=reliability_score)
    return BadgesResponse(
        user_id=user_id,
        badges=[b.to_dict() for b in badges],
        earned_count=sum(1 for b in badges if b.earned),
    )


# =============================================
# RELIABILITY ROUTES
# =============================================

reliability_router = APIRouter(prefix="/v1/reliability", tags=["reliability"])


async def _reliability_view(user_id: str) -> dict:
    try:
        record, restrictions = await pipeline.load_reliability(user_id)
    except _MAPPED as e:
        raise _http_error(e)
    view = format_reliability(record, restrictions).to_dict()
    view["user_id"] = user_id
    return view


@reliability_router.get("/me", response_model=ReliabilityResponse)
async def my_reliability(user: dict = Depends(require_auth)):
    return await _reliability_view(user["id"])


@reliability_router.get("/users/{user_id}", response_model=ReliabilityResponse)
async def member_reliability(user_id: str, user: dict = Depends(require_auth)):
    try:
        await asyncio.to_thread(store.get_profile, user_id)
    except _MAPPED as e:
        raise _http_error(e)
    return await _reliability_view(user_id)


@reliability_router.get("/eligibility", response_model=EligibilityResponse)
async def booking_eligibility(user: dict = Depends(require_auth)):
    """Checked by the booking flow before a seat request is created."""
    try:
        record, restrictions = await pipeline.load_reliability(user["id"])
    except _MAPPED as e:
        raise _http_error(e)

    eligibility = check_booking_eligibility(record, restrictions)
    if not eligibility.is_eligible:
        logger.info("booking_blocked", user_id=user["id"], reason=eligibility.reason)
    return {"user_id": user["id"], **eligibility.to_dict()}
