"""
VendorGate — Authentication
JWT bearer tokens identifying the user whose applications a request may touch.
"""
from datetime import datetime, timedelta, timezone

import jwt as pyjwt
from fastapi import Request, HTTPException

from vendorgate.config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRY_HOURS, DEMO_MODE

DEMO_USER = {"id": "demo-user", "email": "demo@vendor-compliance.local",
             "name": "Demo User", "authenticated": False}

# ============================================================
# JWT
# ============================================================
def create_jwt(user: dict, secret: str = JWT_SECRET) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user["id"], "email": user.get("email", ""), "name": user.get("name", ""),
        "exp": now + timedelta(hours=JWT_EXPIRY_HOURS),
        "iat": now,
    }
    return pyjwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_jwt(token: str, secret: str = JWT_SECRET) -> dict:
    try:
        return pyjwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(401, "Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(401, "Invalid token")


# ============================================================
# REQUEST HELPERS
# ============================================================
async def get_current_user(request: Request) -> dict:
    """Dependency: require an authenticated user (demo user in demo mode)."""
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        payload = decode_jwt(auth[7:])
        return {"id": payload["sub"], "email": payload.get("email", ""),
                "name": payload.get("name", ""), "authenticated": True}
    if DEMO_MODE:
        return dict(DEMO_USER)
    raise HTTPException(401, "Authentication required")
