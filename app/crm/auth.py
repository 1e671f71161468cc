from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone

import jwt
from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from app.crm.constants import ROLE_CLIENT_ADMIN
from app.crm.db import db_session
from app.crm.errors import AuthenticationRequired, Conflict, PersistenceFailure, RateLimited, ValidationFailed
from app.crm.identity import IdentityProviderError, identity_provider
from app.crm.models import User
from app.crm.utils import json_object, normalize_email, parse_int, sha256_text, text_field, utcnow

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_MIN_PASSWORD_LEN = 8
_TOKEN_ALGORITHM = "HS256"


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def issue_access_token(user: User) -> dict:
    ttl_minutes = int(current_app.config.get("ACCESS_TOKEN_TTL_MINUTES") or 480)
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "iat": now,
        "exp": now + timedelta(minutes=ttl_minutes),
    }
    token = jwt.encode(payload, current_app.config["SECRET_KEY"], algorithm=_TOKEN_ALGORITHM)
    return {"access_token": token, "token_type": "bearer", "expires_in": ttl_minutes * 60}


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def load_current_user() -> None:
    """
    Loads g.current_user from the bearer token.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None

    token = _bearer_token()
    if not token:
        return

    try:
        payload = jwt.decode(token, current_app.config["SECRET_KEY"], algorithms=[_TOKEN_ALGORITHM])
    except jwt.InvalidTokenError as e:
        current_app.logger.info("Rejected bearer token (request_id=%s): %s", g.request_id, e)
        return

    user_id = parse_int(str(payload.get("sub") or ""))
    if user_id is None:
        return
    try:
        s = db_session()
        user = s.get(User, user_id)
    except SQLAlchemyError as e:
        current_app.logger.error("load_current_user DB error (request_id=%s): %s", g.request_id, e)
        return
    if user and user.is_active:
        g.current_user = user


def _json_body() -> dict:
    return json_object(request.get_json(silent=True))


def _password(payload: dict) -> str:
    # Not stripped; a non-string password is treated as missing.
    v = payload.get("password")
    return v if isinstance(v, str) else ""


@bp.post("/signup")
def signup():
    """Create a client administrator identity. The tenant is provisioned on first use."""
    payload = _json_body()
    email = normalize_email(text_field(payload, "email"))
    password = _password(payload)
    display_name = text_field(payload, "display_name") or None
    company_name = text_field(payload, "company_name") or None

    if not email or "@" not in email:
        raise ValidationFailed("A valid email is required")
    if len(password) < _MIN_PASSWORD_LEN:
        raise ValidationFailed(f"Password must be at least {_MIN_PASSWORD_LEN} characters")

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none() is not None:
        raise Conflict("An account with this email already exists")

    metadata = {"role": ROLE_CLIENT_ADMIN}
    if company_name:
        metadata["company_name"] = company_name
    try:
        user = identity_provider(s, current_app).create_user(
            email, password=password, display_name=display_name, metadata=metadata
        )
        s.commit()
    except IdentityProviderError as e:
        s.rollback()
        raise Conflict("An account with this email already exists") from e
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.exception("Signup failed (email=%s request_id=%s)", email, g.request_id)
        raise PersistenceFailure() from e

    current_app.logger.info("Signup: user_id=%s email=%s", user.id, email)
    return jsonify({"success": True, "user_id": user.id, **issue_access_token(user)}), 201


@bp.post("/token")
def token():
    payload = _json_body()
    email = normalize_email(text_field(payload, "email"))
    password = _password(payload)
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        raise RateLimited()

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if (
        not user
        or not user.is_active
        or not user.password_hash
        or not check_password_hash(user.password_hash, password)
    ):
        current_app.logger.info("Login failed (email=%s ip=%s)", email, ip)
        raise AuthenticationRequired("Invalid credentials")

    _login_attempts[ip].clear()
    return jsonify({"success": True, **issue_access_token(user)})


@bp.post("/accept-invite")
def accept_invite():
    payload = _json_body()
    raw_token = text_field(payload, "token")
    password = _password(payload)
    if not raw_token:
        raise ValidationFailed("Invite token is required")
    if len(password) < _MIN_PASSWORD_LEN:
        raise ValidationFailed(f"Password must be at least {_MIN_PASSWORD_LEN} characters")

    s = db_session()
    user = s.query(User).filter(User.invite_token_hash == sha256_text(raw_token)).one_or_none()
    if user is None or not user.is_active:
        raise ValidationFailed("Invite link is invalid or has already been used")

    user.password_hash = generate_password_hash(password)
    user.invite_token_hash = None
    user.invite_accepted_at = utcnow()
    user.updated_at = utcnow()
    try:
        s.commit()
    except SQLAlchemyError as e:
        s.rollback()
        current_app.logger.exception("Accept invite failed (user_id=%s)", user.id)
        raise PersistenceFailure() from e

    current_app.logger.info("Invite accepted: user_id=%s", user.id)
    return jsonify({"success": True, "user_id": user.id, **issue_access_token(user)})
