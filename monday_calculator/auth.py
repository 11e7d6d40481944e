"""
Session token verification for requests coming from monday.com.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Request

from .config import MONDAY_SIGNING_SECRET

logger = logging.getLogger(__name__)


class AuthorizationFailure(Exception):
    """Raised when a request carries no valid session token."""
    pass


@dataclass
class Session:
    """Decoded monday.com session."""
    account_id: Optional[str]
    user_id: Optional[str]
    back_to_url: Optional[str]
    short_lived_token: str


def extract_token(request: Request) -> Optional[str]:
    """Read the credential from the Authorization header or ?token=."""
    token = request.headers.get("authorization") or request.query_params.get("token")
    if token and token.lower().startswith("bearer "):
        token = token[len("bearer "):].strip()
    return token or None


def verify_session_token(token: Optional[str], secret: str = MONDAY_SIGNING_SECRET) -> Session:
    """
    Verify and decode a signed session token.

    Args:
        token: JWT signed with the app's signing secret
        secret: Signing secret

    Returns:
        Session carrying the short-lived API token

    Raises:
        AuthorizationFailure: If the token is missing, invalid or has no
            short-lived token
    """
    if not token:
        raise AuthorizationFailure("Authorization header or token query parameter is required")
    if not secret:
        raise AuthorizationFailure("MONDAY_SIGNING_SECRET is not configured")

    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError as e:
        raise AuthorizationFailure(f"Invalid session token: {e}")

    short_lived_token = claims.get("shortLivedToken")
    if not short_lived_token:
        raise AuthorizationFailure("Session token carries no shortLivedToken")

    account_id = claims.get("accountId")
    user_id = claims.get("userId")
    return Session(
        account_id=str(account_id) if account_id is not None else None,
        user_id=str(user_id) if user_id is not None else None,
        back_to_url=claims.get("backToUrl"),
        short_lived_token=short_lived_token,
    )


def require_session(request: Request) -> Session:
    """FastAPI dependency: the verified session of the current request."""
    try:
        return verify_session_token(extract_token(request))
    except AuthorizationFailure as e:
        logger.warning(f"Rejected {request.method} {request.url.path}: {e}")
        raise
