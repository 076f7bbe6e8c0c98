"""
Actor model and bearer token verification.

Sessions and tokens are issued by the external auth service; this module
only verifies the token signature and turns its claims into an ``Actor``
carrying a role and the set of companies the actor may act for. Role and
company checks used by the services live here as well.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional
from uuid import UUID

from jose import JWTError, jwt

from fulfillment.core.config import get_settings
from fulfillment.core.exceptions import Forbidden
from fulfillment.core.logging import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    ADMIN = "ADMIN"
    LOGISTICS = "LOGISTICS"
    CLIENT = "CLIENT"


class TokenError(Exception):
    """Raised when a bearer token cannot be verified."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


@dataclass(frozen=True)
class Actor:
    """
    The authenticated caller of a core operation.

    ``companies`` is None for platform staff scoped to every company.
    """

    id: str
    role: Role
    companies: Optional[FrozenSet[UUID]] = field(default=None)

    def can_access_company(self, company_id: UUID) -> bool:
        return self.companies is None or company_id in self.companies


def ensure_role(actor: Actor, allowed: Iterable[Role], action: str) -> None:
    """
    Reject the actor unless its role is one of ``allowed``.

    Raises:
        Forbidden: If the role is not permitted for the action
    """
    allowed_roles = frozenset(allowed)
    if actor.role not in allowed_roles:
        logger.warning(
            "Action forbidden for role",
            actor_id=actor.id,
            role=actor.role.value,
            action=action,
        )
        raise Forbidden(
            f"Role {actor.role.value} may not {action}",
            action=action,
            role=actor.role.value,
            allowed_roles=sorted(r.value for r in allowed_roles),
        )


def ensure_company_access(actor: Actor, company_id: UUID) -> None:
    """
    Reject the actor if the company is outside its permitted set.

    Raises:
        Forbidden: If the actor is scoped to other companies
    """
    if not actor.can_access_company(company_id):
        logger.warning(
            "Company access forbidden",
            actor_id=actor.id,
            company_id=str(company_id),
        )
        raise Forbidden(
            "You do not have access to this company's orders",
            company_id=company_id,
        )


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and verify a bearer token.

    Args:
        token: Encoded JWT

    Returns:
        Token claims

    Raises:
        TokenError: If the token is empty, expired or invalid
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning(
            "Invalid token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise TokenError("Invalid token", code="TOKEN_INVALID") from e


def actor_from_claims(claims: Dict[str, Any]) -> Actor:
    """
    Build an Actor from verified token claims.

    Expected claims: ``sub``, ``role`` and, for client users,
    ``companies`` (list of company UUIDs).

    Raises:
        TokenError: If required claims are missing or malformed
    """
    subject = claims.get("sub")
    if not subject:
        raise TokenError("Token missing 'sub' claim", code="TOKEN_INVALID")

    try:
        role = Role(str(claims.get("role", "")).upper())
    except ValueError as e:
        raise TokenError(
            "Token carries an unknown role",
            code="TOKEN_INVALID",
            role=claims.get("role"),
        ) from e

    raw_companies = claims.get("companies")
    companies: Optional[FrozenSet[UUID]] = None
    if role == Role.CLIENT or raw_companies is not None:
        try:
            companies = frozenset(UUID(str(c)) for c in raw_companies or [])
        except ValueError as e:
            raise TokenError(
                "Token carries a malformed company id",
                code="TOKEN_INVALID",
            ) from e

    return Actor(id=str(subject), role=role, companies=companies)


def create_access_token(claims: Dict[str, Any]) -> str:
    """Encode claims with the service secret; used by tests and tooling."""
    settings = get_settings()
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)
