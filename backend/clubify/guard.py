"""Request identity and role checks.

One :class:`AccessGuard` serves every route; how it learns who the caller is
depends on the identity strategy chosen at startup. Only
:class:`TokenStrategy` verifies anything. The other two exist for local
development and tests and must never be wired in production.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import jwt
from fastapi import Depends, Header, Request
from loguru import logger
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .config import Settings
from .db import get_db
from .errors import Forbidden, Unauthenticated, Unavailable
from .models import Club, Event
from .store import find_user_by_email


class Role(str, Enum):
    MEMBER = "member"
    CLUB_MANAGER = "clubManager"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def satisfies(self, required: "Role") -> bool:
        return self.rank >= required.rank


_RANKS = {Role.MEMBER: 0, Role.CLUB_MANAGER: 1, Role.ADMIN: 2}


@dataclass
class Caller:
    email: str
    role: Role
    user_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role.satisfies(Role.CLUB_MANAGER)


@dataclass
class Evidence:
    authorization: Optional[str] = None
    user_email: Optional[str] = None

    @property
    def present(self) -> bool:
        return bool(self.authorization or self.user_email)


class IdentityStrategy:
    label = "abstract"
    insecure = False
    requires_evidence = True
    # when set, the store is not consulted and every caller gets this role
    fixed_role: Optional["Role"] = None

    def resolve_email(self, evidence: Evidence) -> str:
        raise NotImplementedError


class TokenStrategy(IdentityStrategy):
    """Verify ``Authorization: Bearer <jwt>`` and read the email claim."""

    label = "token"

    def __init__(
        self,
        secret: str = "",
        algorithms: Optional[list[str]] = None,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        jwks_url: Optional[str] = None,
        email_claim: str = "email",
    ):
        self.secret = secret
        self.algorithms = algorithms or ["HS256"]
        self.audience = audience
        self.issuer = issuer
        self.email_claim = email_claim
        self._jwks = jwt.PyJWKClient(jwks_url) if jwks_url else None

    @property
    def configured(self) -> bool:
        return bool(self.secret or self._jwks)

    def _key(self, token: str):
        if self._jwks is None:
            if not self.secret:
                raise Unauthenticated("Token verification is not configured")
            return self.secret
        try:
            return self._jwks.get_signing_key_from_jwt(token).key
        except jwt.PyJWKClientConnectionError as exc:
            logger.error(f"Signing keys unavailable: {exc}")
            raise Unavailable("Identity verification unavailable") from exc
        except jwt.PyJWKClientError as exc:
            raise Unauthenticated("Invalid token") from exc

    def resolve_email(self, evidence: Evidence) -> str:
        scheme, _, token = (evidence.authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise Unauthenticated("Bearer token required")
        token = token.strip()
        try:
            claims = jwt.decode(
                token,
                self._key(token),
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": self.audience is not None},
            )
        except jwt.PyJWTError as exc:
            raise Unauthenticated("Invalid token") from exc
        email = claims.get(self.email_claim)
        if not isinstance(email, str) or not email.strip():
            raise Unauthenticated("Token has no email claim")
        return email.strip().lower()


class TrustedEmailStrategy(IdentityStrategy):
    """Insecure: believe whatever ``X-User-Email`` says."""

    label = "trusted-email"
    insecure = True

    def resolve_email(self, evidence: Evidence) -> str:
        if not evidence.user_email or not evidence.user_email.strip():
            raise Unauthenticated("User email not provided")
        return evidence.user_email.strip().lower()


class BypassStrategy(IdentityStrategy):
    """Insecure: admit every request as an admin."""

    label = "bypass"
    insecure = True
    requires_evidence = False
    fixed_role = Role.ADMIN
    default_email = "bypass@localhost"

    def resolve_email(self, evidence: Evidence) -> str:
        return (evidence.user_email or self.default_email).strip().lower()


def strategy_from_settings(settings: Settings) -> IdentityStrategy:
    if settings.auth_mode == "bypass":
        return BypassStrategy()
    if settings.auth_mode == "trusted-email":
        return TrustedEmailStrategy()
    return TokenStrategy(
        secret=settings.jwt_secret,
        algorithms=settings.algorithms,
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        jwks_url=settings.jwt_jwks_url,
        email_claim=settings.jwt_email_claim,
    )


class AccessGuard:
    def __init__(self, strategy: IdentityStrategy):
        self.strategy = strategy

    def authenticate(self, db: Session, evidence: Evidence) -> Caller:
        if self.strategy.requires_evidence and not evidence.present:
            raise Unauthenticated("Authentication required")
        email = self.strategy.resolve_email(evidence)
        if self.strategy.fixed_role is not None:
            return Caller(email=email, role=self.strategy.fixed_role)
        try:
            user = find_user_by_email(db, email)
        except OperationalError as exc:
            logger.exception("User lookup failed while authenticating")
            raise Unavailable("Service unavailable") from exc
        if not user:
            raise Forbidden("User not found")
        if not user.is_active:
            raise Forbidden("User is deactivated")
        try:
            role = Role(user.role)
        except ValueError as exc:
            raise Forbidden("User has no valid role") from exc
        return Caller(email=user.email, role=role, user_id=user.id)

    def admit(self, caller: Caller, required: Role) -> Caller:
        if not caller.role.satisfies(required):
            if required is Role.ADMIN:
                raise Forbidden("Access denied. Admin required.")
            if required is Role.CLUB_MANAGER:
                raise Forbidden("Access denied. Club Manager or Admin required.")
            raise Forbidden("Access denied.")
        return caller


def _evidence(
    authorization: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> Evidence:
    return Evidence(authorization=authorization, user_email=x_user_email)


def require(level: Role) -> Callable[..., Caller]:
    """Dependency admitting callers at ``level`` or above."""

    def dependency(
        request: Request,
        evidence: Evidence = Depends(_evidence),
        db: Session = Depends(get_db),
    ) -> Caller:
        guard: AccessGuard = request.app.state.guard
        caller = guard.admit(guard.authenticate(db, evidence), level)
        request.state.caller = caller
        return caller

    return dependency


def optional_caller(
    request: Request,
    evidence: Evidence = Depends(_evidence),
    db: Session = Depends(get_db),
) -> Optional[Caller]:
    """Resolve the caller when identity evidence is sent; ``None`` otherwise."""
    guard: AccessGuard = request.app.state.guard
    if guard.strategy.requires_evidence and not evidence.present:
        return None
    caller = guard.authenticate(db, evidence)
    request.state.caller = caller
    return caller


require_member = require(Role.MEMBER)
require_manager = require(Role.CLUB_MANAGER)
require_admin = require(Role.ADMIN)


def ensure_self_or_manager(caller: Caller, email: str) -> None:
    if caller.email != email and not caller.is_manager:
        raise Forbidden("Access denied. You can only act on your own records.")


def ensure_club_manager(caller: Caller, club: Club) -> None:
    if caller.is_admin:
        return
    if caller.role is not Role.CLUB_MANAGER or club.manager_email != caller.email:
        raise Forbidden("Access denied. You do not manage this club.")


def ensure_event_manager(db: Session, caller: Caller, event: Event) -> None:
    ensure_manages_club_id(db, caller, event.club_id)


def ensure_manages_club_id(db: Session, caller: Caller, club_id: str) -> None:
    """Like :func:`ensure_club_manager`, for records that only carry a club id."""
    club = db.get(Club, club_id)
    if club is None:
        if not caller.is_admin:
            raise Forbidden("Access denied. Admin required.")
        return
    ensure_club_manager(caller, club)
