"""
Authentication Service Router
Password reset tokens for the auth layer; the auth layer mails the token
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from db import get_db
from schemas.api_models import (
    BaseResponse,
    PasswordResetIssuedResponse,
    PasswordResetRedeemRequest,
    PasswordResetRequest,
)
from services.password_reset import issue_token, redeem

router = APIRouter()


@router.post("/password-reset", response_model=PasswordResetIssuedResponse, summary="Issue a reset token")
def request_password_reset(body: PasswordResetRequest, db: Session = Depends(get_db)):
    issued = issue_token(db, body.user_id)
    return PasswordResetIssuedResponse(token=issued.token, version=issued.version, expires_at=issued.expires_at)


@router.post("/password-reset/redeem", response_model=BaseResponse, summary="Redeem a reset token")
def redeem_password_reset(body: PasswordResetRedeemRequest, db: Session = Depends(get_db)):
    redeem(db, body.user_id, body.token, new_password=body.new_password)
    return BaseResponse(message="Password reset token redeemed")
