"""
Password reset tokens

Each issue gets the next version number for the user; only the newest
version can be redeemed, only before it expires and only once. The plain
token is returned to the caller and never stored.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from config import settings
from models import PasswordResetToken, User, utcnow, as_utc
from utils.error_handling import (
    TokenAlreadyUsed,
    TokenExpired,
    TokenNotFound,
    TokenSuperseded,
    require,
    store_transaction,
)
from utils.security import generate_token, hash_password, hash_token, verify_token
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("services.password_reset")


@dataclass(frozen=True)
class IssuedToken:
    token: str
    version: int
    expires_at: datetime


def _lock_user(db: Session, user_id: uuid.UUID) -> User:
    user = db.query(User).filter(User.id == user_id).populate_existing().with_for_update().first()
    return require(user, "user", user_id)


def issue_token(
    db: Session, user_id: uuid.UUID, now: Optional[datetime] = None, timeout: Optional[float] = None
) -> IssuedToken:
    now = as_utc(now) or utcnow()
    with store_transaction(db, "issue reset token", timeout):
        _lock_user(db, user_id)
        current = (
            db.query(func.max(PasswordResetToken.version)).filter(PasswordResetToken.user_id == user_id).scalar()
        )
        version = (current or 0) + 1
        token = generate_token()
        expires_at = now + timedelta(minutes=settings.PASSWORD_RESET_TOKEN_TTL_MINUTES)
        db.add(
            PasswordResetToken(
                user_id=user_id,
                token_hash=hash_token(token),
                version=version,
                expires_at=expires_at,
                created_at=now,
            )
        )
        logger.transition(
            LogCategory.AUTHENTICATION, "password_reset_token", version, None, "issued", user_id=user_id
        )
    return IssuedToken(token=token, version=version, expires_at=expires_at)


def redeem(
    db: Session,
    user_id: uuid.UUID,
    token: str,
    new_password: Optional[str] = None,
    now: Optional[datetime] = None,
    timeout: Optional[float] = None,
) -> PasswordResetToken:
    """
    Consume a reset token, optionally storing a new password with it.

    Checks run in a fixed order: unknown token, expired, already used,
    superseded by a newer version. Nothing is written unless all pass.
    Only the newest PASSWORD_RESET_SCAN_DEPTH versions are hashed against
    the token; anything older reads as unknown.
    """
    now = as_utc(now) or utcnow()
    with store_transaction(db, "redeem reset token", timeout):
        user = _lock_user(db, user_id)
        issued = (
            db.query(PasswordResetToken)
            .filter(PasswordResetToken.user_id == user_id)
            .order_by(PasswordResetToken.version.desc())
            .limit(settings.PASSWORD_RESET_SCAN_DEPTH)
            .all()
        )
        match = next((row for row in issued if verify_token(token, row.token_hash)), None)
        if match is None:
            raise TokenNotFound("Reset token not recognised", entity="password_reset_token", key=user_id)
        if now >= match.expires_at:
            raise TokenExpired("Reset token has expired", entity="password_reset_token", key=match.version)
        if match.used:
            raise TokenAlreadyUsed("Reset token was already used", entity="password_reset_token", key=match.version)
        if match.version != issued[0].version:
            raise TokenSuperseded(
                "A newer reset token has been issued", entity="password_reset_token", key=match.version
            )

        new_hash = hash_password(new_password) if new_password is not None else None

        result = db.execute(
            update(PasswordResetToken)
            .where(PasswordResetToken.id == match.id, PasswordResetToken.used.is_(False))
            .values(used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TokenAlreadyUsed("Reset token was already used", entity="password_reset_token", key=match.version)

        if new_hash is not None:
            user.password = new_hash
        db.refresh(match)
        logger.transition(
            LogCategory.AUTHENTICATION, "password_reset_token", match.version, "issued", "used", user_id=user_id
        )
    return match
