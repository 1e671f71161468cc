"""
Identity provider backed by the users table.

Exposes the operations the invite workflow relies on: paged lookup by email,
invite by email (mails an accept link), direct creation, and metadata update.
"""
from __future__ import annotations

import json
import logging
import secrets
from typing import Any

from flask import Flask
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.crm.mailer import Mailer, MailerError
from app.crm.models import User
from app.crm.utils import json_loads_or_none, normalize_email, sha256_text, utcnow

logger = logging.getLogger(__name__)


class IdentityProviderError(RuntimeError):
    pass


class LocalIdentityProvider:
    def __init__(
        self,
        s: Session,
        *,
        mailer: Mailer,
        site_url: str,
        max_pages: int = 10,
        page_size: int = 1000,
    ) -> None:
        self.s = s
        self.mailer = mailer
        self.site_url = site_url.rstrip("/")
        self.max_pages = max_pages
        self.page_size = page_size

    def list_users(self, *, page: int = 1, per_page: int = 1000) -> list[User]:
        return (
            self.s.query(User)
            .order_by(User.id.asc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )

    def find_user_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup, scanning at most max_pages pages."""
        target = normalize_email(email)
        if not target:
            return None
        for page in range(1, self.max_pages + 1):
            users = self.list_users(page=page, per_page=self.page_size)
            for u in users:
                if (u.email or "").lower() == target:
                    return u
            if len(users) < self.page_size:
                return None
        logger.warning("User lookup for %s stopped after %s pages", target, self.max_pages)
        return None

    def accept_invite_url(self, token: str) -> str:
        return f"{self.site_url}/accept-invite?token={token}"

    def invite_user_by_email(
        self,
        email: str,
        *,
        display_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> User:
        """Create a password-less identity and mail it an accept link."""
        email = normalize_email(email)
        token = secrets.token_urlsafe(32)
        try:
            with self.s.begin_nested():
                user = User(
                    email=email,
                    password_hash=None,
                    display_name=display_name,
                    metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
                    is_active=True,
                    invite_token_hash=sha256_text(token),
                    invited_at=utcnow(),
                )
                self.s.add(user)
                self.s.flush()
                self.mailer.send(
                    email,
                    "You have been invited",
                    (
                        f"Hello{(' ' + display_name) if display_name else ''},\n\n"
                        "You have been invited to join the team as a sales representative.\n"
                        f"Set your password here: {self.accept_invite_url(token)}\n"
                    ),
                )
        except (MailerError, SQLAlchemyError) as e:
            raise IdentityProviderError(f"Invite failed for {email}: {e}") from e
        logger.info("Invited user id=%s email=%s", user.id, email)
        return user

    def create_user(
        self,
        email: str,
        *,
        password: str,
        display_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> User:
        email = normalize_email(email)
        try:
            with self.s.begin_nested():
                user = User(
                    email=email,
                    password_hash=generate_password_hash(password),
                    display_name=display_name,
                    metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
                    is_active=True,
                )
                self.s.add(user)
                self.s.flush()
        except IntegrityError as e:
            raise IdentityProviderError(f"User already exists: {email}") from e
        except SQLAlchemyError as e:
            raise IdentityProviderError(f"Create user failed for {email}: {e}") from e
        logger.info("Created user id=%s email=%s", user.id, email)
        return user

    def update_user(
        self,
        user_id: int,
        *,
        display_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> User:
        """Merge metadata keys into the identity and optionally set its display name."""
        user = self.s.get(User, user_id)
        if user is None:
            raise IdentityProviderError(f"Unknown user id={user_id}")
        if metadata:
            merged = json_loads_or_none(user.metadata_json) or {}
            merged.update(metadata)
            user.metadata_json = json.dumps(merged, sort_keys=True)
        if display_name:
            user.display_name = display_name
        user.updated_at = utcnow()
        self.s.flush()
        return user


def identity_provider(s: Session, app: Flask) -> LocalIdentityProvider:
    return LocalIdentityProvider(
        s,
        mailer=app.extensions["mailer"],
        site_url=app.config.get("SITE_URL") or "",
        max_pages=int(app.config.get("IDENTITY_LOOKUP_MAX_PAGES") or 10),
        page_size=int(app.config.get("IDENTITY_LOOKUP_PAGE_SIZE") or 1000),
    )
