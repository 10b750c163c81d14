"""
Admin authentication for operational endpoints.

Admin calls carry a shared secret in the X-Admin-Key header. Session-based
user authentication is handled upstream by the gateway and never reaches
this service.

Security guarantees:
- Keys are compared in constant time
- The acting identity is a hash of the key, never the key itself
- Missing configuration is reported as 503, bad credentials as 401
"""
import hashlib
import hmac
import os
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from tentquest.core.config import settings
from tentquest.core.errors import UnauthorizedError


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_id: str  # "legacy:<hash>"
    actor_display: Optional[str] = None


def get_admin_api_key() -> str | None:
    """Get admin API key.
    Prefer ADMIN_API_KEY env var; fall back to settings.ADMIN_KEY.
    """
    env_key = os.getenv("ADMIN_API_KEY")
    if env_key:
        return env_key
    return settings.ADMIN_KEY


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    """
    Verify the X-Admin-Key header.
    Returns AdminActor if valid, None if not present/invalid.
    """
    expected_key = get_admin_api_key()
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(
        actor_id=f"legacy:{key_hash}",
        actor_display="Admin Key",
    )


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.

    Usage:
        @router.post("/v1/admin/endpoint")
        def admin_endpoint(actor: AdminActor = Depends(require_admin)):
            pass
    """
    if not get_admin_api_key():
        raise HTTPException(
            status_code=503,
            detail="Admin authentication not configured (set ADMIN_KEY)",
        )

    actor = verify_admin_key(request)
    if not actor:
        raise UnauthorizedError("Unauthorized: invalid or missing admin credentials")

    return actor
