"""
Pydantic schemas for API v1
Request and response contracts of the HTTP adapter
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import SubscriptionStatus


# ============================================================================
# ENUMS
# ============================================================================


class PaymentStatusIn(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# BASE MODELS
# ============================================================================


class BaseResponse(BaseModel):
    """Base response with common fields"""

    success: bool = True
    message: Optional[str] = None


# ============================================================================
# PAYMENT MODELS
# ============================================================================


class PaymentWebhookRequest(BaseModel):
    transaction_id: str = Field(..., min_length=1, max_length=255)
    user_id: uuid.UUID
    amount: int = Field(..., ge=0, description="Amount in minor units")
    method: str = Field("paypal", max_length=50)
    status: PaymentStatusIn
    course_id: Optional[uuid.UUID] = None
    plan_id: Optional[uuid.UUID] = None
    processor_subscription_id: Optional[str] = Field(None, max_length=255)

    @model_validator(mode="after")
    def check_single_target(self):
        if (self.course_id is None) == (self.plan_id is None):
            raise ValueError("exactly one of course_id and plan_id is required")
        return self


class PaymentOutcomeResponse(BaseResponse):
    transaction_id: str
    status: str
    applied: bool
    enrollment_id: Optional[uuid.UUID] = None
    subscription_id: Optional[uuid.UUID] = None
    earned_achievement_ids: List[uuid.UUID] = []


# ============================================================================
# SUBSCRIPTION MODELS
# ============================================================================


class SubscriptionRenewRequest(BaseModel):
    new_end_time: datetime


class SubscriptionCancelRequest(BaseModel):
    effective_time: Optional[datetime] = None


class SubscriptionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    processor_subscription_id: str
    status: SubscriptionStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    version: int

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# PROGRESS MODELS
# ============================================================================


class LessonProgressRequest(BaseModel):
    user_id: uuid.UUID
    lesson_id: uuid.UUID
    completed: bool = False
    fraction: float = Field(0.0, ge=0.0, le=1.0)


class CourseProgressResponse(BaseModel):
    user_id: uuid.UUID
    course_id: uuid.UUID
    progress_percentage: float
    total_lessons: int
    completed_lessons: int
    last_accessed: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# ACCESS MODELS
# ============================================================================


class AccessResponse(BaseModel):
    user_id: uuid.UUID
    course_id: uuid.UUID
    has_access: bool


# ============================================================================
# PASSWORD RESET MODELS
# ============================================================================


class PasswordResetRequest(BaseModel):
    user_id: uuid.UUID


class PasswordResetIssuedResponse(BaseModel):
    token: str
    version: int
    expires_at: datetime


class PasswordResetRedeemRequest(BaseModel):
    user_id: uuid.UUID
    token: str = Field(..., min_length=1)
    new_password: Optional[str] = Field(None, min_length=1)


# ============================================================================
# ERROR MODELS
# ============================================================================


class ErrorDetail(BaseModel):
    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    detail: Optional[Union[str, List[ErrorDetail]]] = None
    entity: Optional[str] = None
    key: Optional[str] = None
    status_code: int
    request_id: Optional[str] = None
