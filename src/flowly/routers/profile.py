from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..auth import get_current_profile
from ..models import ProfileEntity
from ..repositories import Repository, get_repository
from ..schemas import ProfileOut, ProfileUpdate, SubscriptionOut

router = APIRouter(
    prefix="/api/v1/profile",
    tags=["profile"],
)


def _profile_out(profile: ProfileEntity, repo: Repository) -> ProfileOut:
    subscription = repo.get_subscription(profile["id"])
    return ProfileOut(
        **profile,  # type: ignore[arg-type]
        subscription=SubscriptionOut(**subscription) if subscription else None,  # type: ignore[arg-type]
    )


# PUBLIC_INTERFACE
@router.get("", response_model=ProfileOut, summary="Get Profile")
def get_profile(
    profile: ProfileEntity = Depends(get_current_profile),
    repo: Repository = Depends(get_repository),
) -> ProfileOut:
    """
    Return the caller's profile with their subscription, if any.
    """
    return _profile_out(profile, repo)


# PUBLIC_INTERFACE
@router.patch("", response_model=ProfileOut, summary="Update Profile")
def patch_profile(
    payload: ProfileUpdate,
    profile: ProfileEntity = Depends(get_current_profile),
    repo: Repository = Depends(get_repository),
) -> ProfileOut:
    full_name = payload.full_name.strip() if payload.full_name else None
    updated = repo.update_profile(profile["id"], full_name or None)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return _profile_out(updated, repo)
