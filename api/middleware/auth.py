"""
Authentication Middleware

Verifies Firebase ID tokens and builds the request-scoped caller context:
- identity from the verified token
- active role and unlocked roles from users/{uid}
- subscription from subscriptions/{uid}, with lazy expiry applied

Role and subscription are always read server-side. Nothing the client
sends about them is trusted.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from api.dependencies import get_store
from entitlements.document_store import DocumentStore
from entitlements.firebase_app import get_firebase_app
from entitlements.models import RequestContext, Role
from entitlements.role_unlock import USERS_COLLECTION
from entitlements.subscription_state import SubscriptionRepository
from utils.logger import logger

# Security scheme for Swagger UI
security_scheme = HTTPBearer(auto_error=False)


async def verify_firebase_token(token: str) -> Optional[dict]:
    """
    Verify a Firebase ID token.

    Args:
        token: Firebase ID token string

    Returns:
        Decoded token claims if valid, None otherwise
    """
    from firebase_admin import auth

    app = get_firebase_app()

    try:
        return auth.verify_id_token(token, app=app, check_revoked=True)
    except auth.RevokedIdTokenError:
        return None
    except auth.ExpiredIdTokenError:
        return None
    except auth.InvalidIdTokenError:
        return None
    except auth.UserDisabledError:
        return None
    except auth.CertificateFetchError as e:
        logger.error(f"Token verification error: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service unavailable. Please try again later.",
        )


def _parse_role(value) -> Optional[Role]:
    try:
        return Role(value) if value else None
    except ValueError:
        return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    store: DocumentStore = Depends(get_store),
) -> RequestContext:
    """
    FastAPI dependency returning the authenticated caller.

    Raises HTTPException 401 if not authenticated.

    Usage:
        @router.get("/protected")
        async def protected_route(ctx: RequestContext = Depends(get_current_user)):
            return {"uid": ctx.user_id}
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    decoded = await verify_firebase_token(credentials.credentials)

    if decoded is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    uid = decoded["uid"]
    profile = await store.get(USERS_COLLECTION, uid) or {}
    subscription = await SubscriptionRepository(store).load(uid)

    role = _parse_role(profile.get("role"))
    if role is None and subscription is not None:
        role = subscription.role

    roles = [r for r in (_parse_role(v) for v in profile.get("roles") or []) if r is not None]
    if role is not None and role not in roles:
        roles.append(role)

    return RequestContext(
        user_id=uid,
        role=role,
        roles=roles,
        # Set via: auth.set_custom_user_claims(uid, {'admin': True})
        is_admin=bool(decoded.get("admin", False)),
        email=decoded.get("email"),
        subscription=subscription,
    )


async def require_admin(
    ctx: RequestContext = Depends(get_current_user)
) -> RequestContext:
    """FastAPI dependency to require the admin custom claim."""
    if not ctx.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required for this operation.",
        )
    return ctx
