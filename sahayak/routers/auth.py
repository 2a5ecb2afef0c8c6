"""
Sahayak v1.0 — Authentication
JWT bearer tokens. Users are issued tokens by the account service; this
module only mints (tests, tooling) and verifies them.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import HTTPException, Request

from sahayak.config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRY_HOURS


# ─── JWT Helpers ─────────────────────────────────────────────────────────────

def create_token(user_id: str, role: str = "student") -> str:
    payload = {
        "sub": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRY_HOURS),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def get_current_user(request: Request) -> dict:
    """FastAPI dependency: extract and verify JWT from Authorization header."""
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing token")
    return verify_token(auth[7:])


def user_from_query_token(token: Optional[str]) -> Optional[dict]:
    """WebSockets can't send headers from browsers; the token rides in ?token=."""
    if not token:
        return None
    try:
        return verify_token(token)
    except HTTPException:
        return None
