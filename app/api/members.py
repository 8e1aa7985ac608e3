"""
Carpool - Member Documents & Verification API

Writes that feed the trust score. Every one of them drops the member's cached
score and re-persists it, so the profile's trust_score never goes stale.

Member endpoints (JWT):
    PUT   /v1/members/me/license          - Submit or resubmit your driver license
    POST  /v1/members/me/insurance        - Add a vehicle insurance policy
    PATCH /v1/members/me/verification     - Change your phone number or photo verification

Admin endpoints:
    POST  /v1/admin/licenses/{user_id}/review
    POST  /v1/admin/insurance/{insurance_id}/review
    PATCH /v1/admin/users/{user_id}/verification
"""
import asyncio
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, ConfigDict, Field
import structlog

from app.security import require_auth, require_admin
from app.members import store
from app.members.model import LicenseStatus, InsuranceStatus
from app.compute.pipeline import rescore_member

logger = structlog.get_logger()


# =============================================
# REQUEST MODELS
# =============================================

class LicenseSubmission(BaseModel):
    expiry_date: date
    issuing_country: Optional[str] = Field(None, max_length=64)
    license_class: Optional[str] = Field(None, max_length=16)
    document_path: Optional[str] = Field(None, max_length=512)


class InsuranceSubmission(BaseModel):
    expiry_date: date
    provider: Optional[str] = Field(None, max_length=128)
    policy_number: Optional[str] = Field(None, max_length=64)
    document_path: Optional[str] = Field(None, max_length=512)


class VerificationUpdate(BaseModel):
    """
    What a member may change about themselves. Email, phone and ID verification
    come from the verification workflows and are set through the admin route.
    """
    model_config = ConfigDict(extra="forbid")

    phone: Optional[str] = Field(None, max_length=32)
    profile_verified: Optional[bool] = None


class AdminVerificationUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email_verified: Optional[bool] = None
    phone_verified: Optional[bool] = None
    profile_verified: Optional[bool] = None
    id_verified: Optional[bool] = None


class LicenseReview(BaseModel):
    status: LicenseStatus
    rejection_reason: Optional[str] = Field(None, max_length=500)


class InsuranceReview(BaseModel):
    status: InsuranceStatus


def _store_error(e: Exception) -> HTTPException:
    if isinstance(e, store.MemberNotFoundError):
        return HTTPException(status_code=404, detail=f"{e.user_id} not found")
    return HTTPException(status_code=503, detail="Member store unavailable")


_STORE_ERRORS = (store.MemberNotFoundError, store.StoreUnavailableError)


# =============================================
# MEMBER ROUTES
# =============================================

members_router = APIRouter(prefix="/v1/members", tags=["members"])


@members_router.put("/me/license")
async def submit_license(data: LicenseSubmission, user: dict = Depends(require_auth)):
    """Resubmitting always puts the license back into review."""
    try:
        lic = await asyncio.to_thread(
            store.upsert_driver_license,
            user["id"],
            data.expiry_date,
            data.issuing_country,
            data.license_class,
            data.document_path,
        )
    except _STORE_ERRORS as e:
        raise _store_error(e)
    await rescore_member(user["id"])
    return lic.to_dict()


@members_router.post("/me/insurance", status_code=201)
async def submit_insurance(data: InsuranceSubmission, user: dict = Depends(require_auth)):
    try:
        policy = await asyncio.to_thread(
            store.add_insurance,
            user["id"],
            data.expiry_date,
            data.provider,
            data.policy_number,
            data.document_path,
        )
    except _STORE_ERRORS as e:
        raise _store_error(e)
    await rescore_member(user["id"])
    return policy.to_dict()


def _verification_view(profile) -> dict:
    return {
        "user_id": profile.id,
        "email_verified": profile.email_verified,
        "phone": profile.phone,
        "phone_verified": profile.phone_verified,
        "profile_verified": profile.profile_verified,
        "id_verified": profile.id_verified,
    }


def _apply_member_update(user_id: str, data: VerificationUpdate):
    profile = None
    if "phone" in data.model_fields_set:
        profile = store.update_phone(user_id, data.phone)
    if data.profile_verified is not None:
        profile = store.update_verification_flags(user_id, {"profile_verified": data.profile_verified})
    return profile


@members_router.patch("/me/verification")
async def update_verification(data: VerificationUpdate, user: dict = Depends(require_auth)):
    """Sending "phone": null clears the number."""
    if "phone" not in data.model_fields_set and data.profile_verified is None:
        raise HTTPException(status_code=422, detail="Nothing to update")

    try:
        profile = await asyncio.to_thread(_apply_member_update, user["id"], data)
    except _STORE_ERRORS as e:
        raise _store_error(e)
    await rescore_member(user["id"])
    return _verification_view(profile)


# =============================================
# ADMIN ROUTES
# =============================================

admin_router = APIRouter(prefix="/v1/admin", tags=["admin"])


@admin_router.post("/licenses/{user_id}/review")
async def review_license(user_id: str, data: LicenseReview, admin: dict = Depends(require_admin)):
    if data.status == LicenseStatus.REJECTED and not data.rejection_reason:
        raise HTTPException(status_code=422, detail="rejection_reason is required when rejecting")

    try:
        lic = await asyncio.to_thread(store.review_driver_license, user_id, data.status, data.rejection_reason)
    except _STORE_ERRORS as e:
        raise _store_error(e)
    await rescore_member(user_id)
    logger.info("admin_license_review", admin_id=admin["id"], user_id=user_id, status=data.status.value)
    return lic.to_dict()


@admin_router.post("/insurance/{insurance_id}/review")
async def review_insurance(insurance_id: str, data: InsuranceReview, admin: dict = Depends(require_admin)):
    try:
        policy = await asyncio.to_thread(store.review_insurance, insurance_id, data.status)
    except _STORE_ERRORS as e:
        raise _store_error(e)
    await rescore_member(policy.user_id)
    logger.info("admin_insurance_review", admin_id=admin["id"],
                insurance_id=insurance_id, status=data.status.value)
    return policy.to_dict()


@admin_router.patch("/users/{user_id}/verification")
async def admin_update_verification(
    user_id: str,
    data: AdminVerificationUpdate,
    admin: dict = Depends(require_admin),
):
    """Set by the email, SMS and ID verification workflows."""
    flags = data.model_dump(exclude_none=True)
    if not flags:
        raise HTTPException(status_code=422, detail="Nothing to update")

    try:
        profile = await asyncio.to_thread(store.update_verification_flags, user_id, flags)
    except _STORE_ERRORS as e:
        raise _store_error(e)
    await rescore_member(user_id)
    logger.info("admin_verification_update", admin_id=admin["id"], user_id=user_id, flags=sorted(flags))
    return _verification_view(profile)
