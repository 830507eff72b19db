import logging
import os
import re
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException, Request, status
from passlib.context import CryptContext

from .constants import USER_TYPES
from .models import utc_now
from .storage import RecordStore


logger = logging.getLogger("uvicorn.error")

DEFAULT_TOKEN_TTL_MINUTES = 720
MIN_PASSWORD_LENGTH = 8
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_ephemeral_secret = secrets.token_urlsafe(48)
_warned_ephemeral_secret = False


def jwt_secret() -> str:
    global _warned_ephemeral_secret
    secret = os.getenv("AUTH_JWT_SECRET", "").strip()
    if secret:
        return secret
    if not _warned_ephemeral_secret:
        _warned_ephemeral_secret = True
        logger.warning("AUTH_JWT_SECRET is not set; tokens will not survive a restart.")
    return _ephemeral_secret


def _token_ttl() -> timedelta:
    minutes = int(os.getenv("AUTH_TOKEN_TTL_MINUTES", str(DEFAULT_TOKEN_TTL_MINUTES)))
    return timedelta(minutes=minutes)


def hash_password(raw_password: str) -> str:
    return pwd_context.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(raw_password, hashed_password)


def encode_token(claims: Dict[str, Any], ttl: timedelta) -> str:
    payload = dict(claims)
    payload["exp"] = utc_now() + ttl
    return jwt.encode(payload, jwt_secret(), algorithm="HS256")


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and verify a token; raises PermissionError when it is invalid or expired."""
    try:
        return jwt.decode(token, jwt_secret(), algorithms=["HS256"])
    except jwt.ExpiredSignatureError as exc:
        raise PermissionError("Token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise PermissionError("Invalid token.") from exc


def create_access_token(user: dict, user_type: str) -> str:
    return encode_token(
        {"sub": user["id"], "email": user["email"], "user_type": user_type, "scope": "access"},
        _token_ttl(),
    )


def dashboard_route(user_type: str) -> str:
    return "/founder-dashboard" if user_type == "founder" else "/dashboard"


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def signup(
    record_store: RecordStore,
    *,
    email: str,
    password: str,
    confirm_password: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    user_type: str = "investor",
) -> dict:
    normalized = _normalize_email(email)
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError("Please enter a valid email address.")
    if password != confirm_password:
        raise ValueError("Passwords do not match")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if user_type not in USER_TYPES or user_type == "admin":
        raise ValueError("user_type must be investor or founder.")

    if record_store.find_one("users", iexact={"email": normalized}):
        raise FileExistsError("An account with this email already exists.")

    display_name = " ".join(part.strip() for part in (first_name or "", last_name or "") if part.strip())
    user = record_store.insert(
        "users",
        {
            "email": normalized,
            "password_hash": hash_password(password),
            "name": display_name or None,
        },
    )
    record_store.insert(
        "user_profiles",
        {
            "user_id": user["id"],
            "user_type": user_type,
            "first_name": first_name,
            "last_name": last_name,
        },
    )
    logger.info("user_id=%s signup user_type=%s", user["id"], user_type)
    return {
        "access_token": create_access_token(user, user_type),
        "user_id": user["id"],
        "user_type": user_type,
        "redirect_to": dashboard_route(user_type),
    }


def login(record_store: RecordStore, *, email: str, password: str) -> dict:
    user = record_store.find_one("users", iexact={"email": _normalize_email(email)})
    if user is None or not verify_password(password or "", user["password_hash"]):
        raise PermissionError("Invalid email or password")

    profile = record_store.find_one("user_profiles", filters={"user_id": user["id"]})
    user_type = profile["user_type"] if profile else "investor"
    return {
        "access_token": create_access_token(user, user_type),
        "user_id": user["id"],
        "user_type": user_type,
        "redirect_to": dashboard_route(user_type),
    }


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def current_user(request: Request, authorization: Optional[str] = Header(None)) -> dict:
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        claims = decode_token(token)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    if claims.get("scope") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    record_store: RecordStore = request.app.state.record_store
    user = record_store.get("users", claims.get("sub", ""))
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User no longer exists")

    profile = record_store.find_one("user_profiles", filters={"user_id": user["id"]})
    return {
        "id": user["id"],
        "email": user["email"],
        "name": user.get("name"),
        "user_type": profile["user_type"] if profile else claims.get("user_type", "investor"),
    }


def require_role(user: dict, *roles: str) -> None:
    have = user.get("user_type")
    if have == "admin" or have in roles:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
