"""
Entitlement checks for content delivery
"""

import uuid

from fastapi import APIRouter

from db import SessionLocal
from schemas.api_models import AccessResponse
from services.entitlements import CachedEntitlements

router = APIRouter()

entitlements = CachedEntitlements(SessionLocal)


@router.get("/{user_id}/{course_id}", response_model=AccessResponse, summary="May the user open the course")
def check_access(user_id: uuid.UUID, course_id: uuid.UUID):
    return AccessResponse(user_id=user_id, course_id=course_id, has_access=entitlements.has_access(user_id, course_id))
