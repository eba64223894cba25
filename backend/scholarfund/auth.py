"""Identity gateway and FastAPI security dependency.

`IdentityGateway` is the local stand-in for an external identity provider:
it keeps login handles with passlib hashes in the `credential` table and
issues PyJWT bearer tokens. The rest of the service only ever sees the
resulting `Identity` (id + role).

`get_current_identity` is the FastAPI dependency every protected route
uses. It raises `Unauthorized` before any business logic runs.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Optional, Tuple
import uuid

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from .config import settings
from .database import engine
from .errors import DuplicateIdentity, InvalidCredentials, StorageFailure, Unauthorized
from . import models
from .schemas import Identity

logger = logging.getLogger("scholarfund.auth")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


class IdentityGateway:
    """Credential provisioning, verification and token issuance."""
    def __init__(self, bind=None):
        self.bind = bind if bind is not None else engine

    def create_user(self, handle: str, secret: str, role: str) -> Identity:
        """Provision a credential for `handle`.

        Raises `DuplicateIdentity` when the handle is already registered.
        """
        identity = Identity(id=uuid.uuid4().hex, role=role)
        cred = models.Credential(
            id=identity.id,
            handle=handle,
            role=role,
            password_hash=PWD_CTX.hash(secret),
        )
        try:
            with Session(self.bind) as session:
                if self._by_handle(session, handle) is not None:
                    raise DuplicateIdentity(f"an account for {handle} already exists")
                session.add(cred)
                session.commit()
        except IntegrityError as exc:
            # lost a race with a concurrent signup for the same handle
            raise DuplicateIdentity(f"an account for {handle} already exists") from exc
        except SQLAlchemyError as exc:
            logger.exception("credential insert failed")
            raise StorageFailure("identity gateway unavailable") from exc
        return identity

    def remove_user(self, user_id: str) -> None:
        """Delete a credential; used to undo a registration that failed halfway."""
        try:
            with Session(self.bind) as session:
                cred = session.get(models.Credential, user_id)
                if cred is not None:
                    session.delete(cred)
                    session.commit()
        except SQLAlchemyError as exc:
            logger.exception("credential delete failed for %s", user_id)
            raise StorageFailure("identity gateway unavailable") from exc

    def sign_in(self, handle: str, secret: str) -> Tuple[str, Identity]:
        """Verify the secret for `handle` and return a signed token.

        Raises `InvalidCredentials` for an unknown handle or wrong secret.
        """
        try:
            with Session(self.bind) as session:
                cred = self._by_handle(session, handle)
        except SQLAlchemyError as exc:
            logger.exception("credential lookup failed")
            raise StorageFailure("identity gateway unavailable") from exc
        if cred is None or not PWD_CTX.verify(secret, cred.password_hash):
            raise InvalidCredentials()
        identity = Identity(id=cred.id, role=cred.role)
        return self.issue_token(identity), identity

    def issue_token(self, identity: Identity) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"sub": identity.id, "role": identity.role, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def verify_token(self, token: str) -> Identity:
        """Decode `token` and confirm its credential still exists."""
        try:
            payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise Unauthorized("token expired")
        except jwt.InvalidTokenError:
            raise Unauthorized("invalid token")
        user_id = payload.get("sub")
        if not user_id:
            raise Unauthorized("invalid token payload")
        try:
            with Session(self.bind) as session:
                cred = session.get(models.Credential, user_id)
        except SQLAlchemyError as exc:
            logger.exception("credential lookup failed")
            raise StorageFailure("identity gateway unavailable") from exc
        if cred is None:
            raise Unauthorized("user not found")
        return Identity(id=cred.id, role=cred.role)

    def _by_handle(self, session: Session, handle: str) -> Optional[models.Credential]:
        stmt = select(models.Credential).where(models.Credential.handle == handle)
        return session.exec(stmt).first()


def get_gateway() -> IdentityGateway:
    """FastAPI dependency returning the identity gateway."""
    return IdentityGateway()


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    gateway: IdentityGateway = Depends(get_gateway),
) -> Identity:
    """FastAPI dependency that resolves the caller's `Identity`.

    Missing, malformed, expired or orphaned tokens all raise `Unauthorized`.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthorized("missing bearer token")
    return gateway.verify_token(credentials.credentials)
