# Overview: Service-layer operations for session tokens; resolves bearer tokens into an AuthenticatedUser.

"""
Session Token Service

WHY: The fulfillment core trusts only an AuthenticatedUser{id, role}. Login
and registration belong to the account service; this module issues and
validates the opaque bearer tokens that identify a user to this API.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute and idle timeouts
- Revocable
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from storefront.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)  # Maximum session length
SESSION_IDLE_TIMEOUT = timedelta(hours=2)        # Activity timeout


@dataclass(frozen=True)
class AuthenticatedUser:
    """Capability handed to the core: who is acting and with which role."""
    id: int
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def performed_by(self) -> str:
        """Audit-log identity for inventory ledger entries."""
        return str(self.id)


def generate_token() -> str:
    return secrets.token_hex(32)  # 32 bytes = 64 hex characters


def hash_token(token: str) -> str:
    """
    SHA-256 is enough here: tokens are already high-entropy, unlike passwords.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int) -> tuple[SessionToken, str]:
    """
    Create a session for an active user.

    Returns (session_record, plaintext_token). Only the hash is stored.
    Raises ValueError if the user is missing or inactive.
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> AuthenticatedUser | None:
    """
    Resolve a bearer token.

    Returns None if the token is unknown, revoked, expired, idle too long, or
    belongs to an inactive user.
    """
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return None

    now = utcnow()
    if now >= session.expires_at or now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        return None

    user = db.session.query(User).filter_by(id=session.user_id).first()
    if not user or not user.is_active:
        return None

    session.last_used_at = now
    db.session.commit()

    return AuthenticatedUser(id=user.id, role=user.role)


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
