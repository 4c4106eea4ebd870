"""
Local identity provider.
Keeps accounts in the ``identity_accounts`` table and issues HS256 JWTs.
Every call runs in its own session and commits on its own, the same way a
hosted provider would: callers cannot roll its writes back.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
import structlog
from passlib.context import CryptContext
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import SessionLocal
from ..errors import ValidationFailed
from ..models.models import IdentityAccount
from .provider import (
    AccountExists,
    AccountNotFound,
    IdentityError,
    IdentityProvider,
    InvalidCredentials,
)


logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def create_access_token(uid: str, ttl_seconds: Optional[int] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": uid,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds or settings.jwt_ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise InvalidCredentials("Token expired")
    except jwt.InvalidTokenError:
        raise InvalidCredentials("Invalid token")


class LocalIdentityProvider(IdentityProvider):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def _get(self, db: Session, uid: str) -> IdentityAccount:
        account = db.get(IdentityAccount, uid)
        if account is None:
            raise AccountNotFound(f"Identity account {uid} not found")
        return account

    def create_account(self, email, display_name=None, password=None, password_hash=None) -> str:
        if not password and not password_hash:
            raise ValidationFailed("A password or password hash is required")
        try:
            with self._session_factory() as db:
                account = IdentityAccount(
                    email=email.strip().lower(),
                    display_name=display_name,
                    password_hash=password_hash or get_password_hash(password),
                )
                db.add(account)
                db.commit()
                logger.info("identity_account_created", uid=account.uid)
                return account.uid
        except IntegrityError:
            raise AccountExists("An account with this email already exists")
        except SQLAlchemyError as e:
            raise IdentityError(f"Identity provider unavailable: {e.__class__.__name__}")

    def get_uid_by_email(self, email: str) -> Optional[str]:
        try:
            with self._session_factory() as db:
                return db.execute(
                    select(IdentityAccount.uid).where(IdentityAccount.email == email.strip().lower())
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise IdentityError(f"Identity provider unavailable: {e.__class__.__name__}")

    def set_disabled(self, uid: str, disabled: bool) -> None:
        try:
            with self._session_factory() as db:
                account = self._get(db, uid)
                account.disabled = disabled
                db.commit()
        except SQLAlchemyError as e:
            raise IdentityError(f"Identity provider unavailable: {e.__class__.__name__}")
        logger.info("identity_account_disabled" if disabled else "identity_account_enabled", uid=uid)

    def delete_account(self, uid: str) -> None:
        try:
            with self._session_factory() as db:
                account = db.get(IdentityAccount, uid)
                if account is None:
                    logger.warning("identity_account_missing_on_delete", uid=uid)
                    return
                db.delete(account)
                db.commit()
        except SQLAlchemyError as e:
            raise IdentityError(f"Identity provider unavailable: {e.__class__.__name__}")
        logger.info("identity_account_deleted", uid=uid)

    def verify_token(self, token: str) -> str:
        payload = decode_token(token)
        uid = payload.get("sub")
        if not uid:
            raise InvalidCredentials("Invalid subject")
        try:
            with self._session_factory() as db:
                account = db.get(IdentityAccount, str(uid))
                if account is None:
                    raise InvalidCredentials("Token revoked")
                if account.disabled:
                    raise InvalidCredentials("Account is disabled")
        except SQLAlchemyError as e:
            raise IdentityError(f"Identity provider unavailable: {e.__class__.__name__}")
        return str(uid)

    def sign_in(self, email: str, password: str) -> str:
        try:
            with self._session_factory() as db:
                account = db.execute(
                    select(IdentityAccount).where(IdentityAccount.email == email.strip().lower())
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise IdentityError(f"Identity provider unavailable: {e.__class__.__name__}")
        if account is None or not verify_password(password, account.password_hash):
            raise InvalidCredentials("Invalid email or password")
        if account.disabled:
            raise InvalidCredentials("Account is disabled")
        return create_access_token(account.uid)

    def change_password(self, uid: str, password: str) -> None:
        try:
            with self._session_factory() as db:
                account = self._get(db, uid)
                account.password_hash = get_password_hash(password)
                db.commit()
        except SQLAlchemyError as e:
            raise IdentityError(f"Identity provider unavailable: {e.__class__.__name__}")
        logger.info("identity_password_changed", uid=uid)

    def ping(self) -> bool:
        try:
            with self._session_factory() as db:
                db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False
