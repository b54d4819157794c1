import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from database import db, serialize_doc, to_obj_id
from errors import Forbidden, Unauthorized, ValidationFailed
from roles import has_permission
from settings import COOKIE_SECURE, JWT_ALGO, JWT_COOKIE_EXPIRE_DAYS, JWT_EXPIRE_DAYS, JWT_SECRET

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 260_000
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS).hex()
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest}"


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    try:
        _, iterations, salt, digest = (password_hash or "").split("$")
    except ValueError:
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations)).hex()
    return hmac.compare_digest(candidate, digest)


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRE_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


def public_user(doc: dict) -> dict:
    user = serialize_doc(doc)
    user.pop("password_hash", None)
    user.pop("email_verification_token", None)
    return user


def issue_token(user: dict, response: Response) -> str:
    """Sign a token for `user` and also hand it out as an httpOnly cookie."""
    token = create_token({"id": user["id"], "email": user["email"], "role": user["role"]})
    response.set_cookie(
        "token",
        token,
        max_age=JWT_COOKIE_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="strict",
    )
    return token


def get_current_user(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    token = credentials.credentials if credentials else request.cookies.get("token")
    if not token:
        raise Unauthorized("Not authorized to access this route - No token provided")
    payload = decode_token(token)
    user_id = payload.get("id")
    if not user_id:
        raise Unauthorized("Invalid token payload")
    try:
        user = db["user"].find_one({"_id": to_obj_id(user_id)})
    except ValidationFailed:
        raise Unauthorized("Invalid token payload")
    if not user:
        raise Unauthorized("Not authorized to access this route - User not found")
    return public_user(user)


def require_roles(*roles: str):
    def checker(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            raise Forbidden(f"User role '{user.get('role')}' is not authorized to access this route")
        return user

    return checker


get_current_admin = require_roles("admin")


def require_permission(resource: str, action: str):
    """Gate a route on the caller's role document rather than their role name."""
    def checker(user=Depends(get_current_user)):
        if not has_permission(user["id"], resource, action):
            logger.info("User %s lacks %s:%s", user["id"], resource, action)
            raise Forbidden(f"Not authorized to {action} {resource}")
        return user

    return checker


def is_owner_or_admin(user: dict, owner_id: str) -> bool:
    return user.get("role") == "admin" or user.get("id") == owner_id
