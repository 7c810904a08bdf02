# health_explorer/api/profile.py
from typing import List, Optional

from fastapi import APIRouter, Depends

from health_explorer.api.deps import get_current_user, get_repo
from health_explorer.schemas.chat import HealthInsight
from health_explorer.schemas.profile import PatientProfile
from health_explorer.services.repo import Repo

router = APIRouter(prefix="/api", tags=["profile"])


@router.get("/profile", response_model=Optional[PatientProfile])
async def get_profile(
    user_id: str = Depends(get_current_user),
    repo: Repo = Depends(get_repo),
):
    return await repo.get_profile(user_id)


@router.put("/profile", response_model=PatientProfile)
async def save_profile(
    payload: PatientProfile,
    user_id: str = Depends(get_current_user),
    repo: Repo = Depends(get_repo),
):
    return await repo.save_profile(user_id, payload)


@router.get("/insights", response_model=List[HealthInsight])
async def list_insights(
    user_id: str = Depends(get_current_user),
    repo: Repo = Depends(get_repo),
):
    """Insight ledger across all sessions, newest first."""
    return await repo.list_insights(user_id)
