"""Salted hashing for credentials and single-use tokens"""

import secrets

from passlib.hash import pbkdf2_sha256

from config import settings
from utils.error_handling import InvalidInput


def hash_password(password: str) -> str:
    if not password:
        raise InvalidInput("Password cannot be empty", entity="user", key="password")
    if len(password) > settings.PASSWORD_MAX_LENGTH:
        raise InvalidInput(
            f"Password must not be more than {settings.PASSWORD_MAX_LENGTH} characters", entity="user", key="password"
        )
    return pbkdf2_sha256.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return pbkdf2_sha256.verify(password, hashed)
    except ValueError:
        # Not a pbkdf2_sha256 hash
        return False


def generate_token(nbytes: int = 32) -> str:
    """URL-safe random token handed to the user; only its hash is stored"""
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    return pbkdf2_sha256.hash(token)


def verify_token(token: str, token_hash: str) -> bool:
    return verify_password(token, token_hash)
