"""
Authentication for the sync API.

Accounts are username/password pairs; passwords are hashed with werkzeug.
Requests carry a bearer token of the form ``<claims>.<signature>`` where
claims is base64url JSON ``{"id", "username"}`` and signature is the hex
HMAC-SHA256 of the claims segment keyed with AUTH_SECRET.
"""

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from smsync.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Verified caller attached to every protected request."""
    user_id: int
    username: str


class UsernameTakenError(Exception):
    """Registration attempted with an existing username."""


class InvalidCredentialsError(Exception):
    """Unknown username or wrong password; deliberately indistinguishable."""


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def compute_signature(segment: str, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        segment.encode("ascii"),
        hashlib.sha256
    ).hexdigest()


def issue_token(identity: Identity, secret: Optional[str] = None) -> str:
    """Sign the identity claims into a bearer token."""
    secret = secret or settings.AUTH_SECRET
    claims = json.dumps(
        {"id": identity.user_id, "username": identity.username},
        separators=(",", ":"),
    )
    segment = _b64encode(claims.encode("utf-8"))
    return f"{segment}.{compute_signature(segment, secret)}"


def verify_token(token: str, secret: Optional[str] = None) -> Optional[Identity]:
    """
    Verify a bearer token.

    Returns:
        The identity if the signature matches and the claims decode, None otherwise
    """
    secret = secret or settings.AUTH_SECRET
    segment, _, signature = token.partition(".")
    if not segment or not signature:
        return None

    # Use constant-time comparison to prevent timing attacks
    if not hmac.compare_digest(compute_signature(segment, secret), signature):
        logger.debug("Token signature mismatch")
        return None

    try:
        claims = json.loads(_b64decode(segment))
        return Identity(user_id=int(claims["id"]), username=str(claims["username"]))
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Signed token carries malformed claims: {e}")
        return None


def get_current_user(
    authorization: Annotated[Optional[str], Header()] = None,
) -> Identity:
    """
    FastAPI dependency resolving the caller from the Authorization header.

    Raises:
        HTTPException: 401 when no token is supplied, 403 when it does not verify
    """
    token = None
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            token = credentials.strip()

    if token is None:
        logger.info("Auth failed: no token provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    identity = verify_token(token)
    if identity is None:
        logger.info("Auth failed: invalid token")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="invalid token",
        )
    return identity


CurrentUser = Annotated[Identity, Depends(get_current_user)]


# =============================================================================
# Account Functions
# =============================================================================

def register_user(db: Session, username: str, password: str) -> Identity:
    """
    Create an account.

    Raises:
        UsernameTakenError: username already registered
    """
    from smsync.models import User

    user = User(username=username, password_hash=generate_password_hash(password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise UsernameTakenError(username)
    db.refresh(user)
    logger.info(f"Registered user {user.id}")
    return Identity(user_id=user.id, username=user.username)


def authenticate_user(db: Session, username: str, password: str) -> Identity:
    """
    Check credentials.

    Raises:
        InvalidCredentialsError: unknown username or wrong password
    """
    from smsync.models import User

    user = db.query(User).filter(User.username == username).first()
    if user is None or not check_password_hash(user.password_hash, password):
        raise InvalidCredentialsError()
    return Identity(user_id=user.id, username=user.username)
