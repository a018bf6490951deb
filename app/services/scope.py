"""
Scope resolver: (scope, id) -> the set of user ids a metric is computed over.

Validation happens here, before any computation:
  - team / user scopes require a non-empty id that exists in the organization
  - an id passed with organization scope is ignored
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import InvalidScopeError
from app.core.logging import get_logger
from app.models.team import Team
from app.models.user import User

logger = get_logger(__name__)


class ScopeType(str, enum.Enum):
    organization = "organization"
    team = "team"
    user = "user"


@dataclass(frozen=True)
class Scope:
    kind: ScopeType
    entity_id: str = ""

    @classmethod
    def parse(cls, kind: str | ScopeType, entity_id: Optional[str] = None) -> "Scope":
        try:
            scope_type = ScopeType(kind)
        except ValueError:
            raise InvalidScopeError(
                f"Unknown scope {kind!r}. Expected organization, team or user.",
                scope=str(kind),
            ) from None
        entity_id = (entity_id or "").strip()
        if scope_type == ScopeType.organization:
            if entity_id:
                logger.debug("organization_scope_id_ignored", entity_id=entity_id)
            return cls(kind=scope_type)
        if not entity_id:
            raise InvalidScopeError(
                f"An id is required for {scope_type.value} scope.",
                scope=scope_type.value,
            )
        return cls(kind=scope_type, entity_id=entity_id)

    @classmethod
    def organization(cls) -> "Scope":
        return cls(kind=ScopeType.organization)

    @classmethod
    def team(cls, team_id: str) -> "Scope":
        return cls.parse(ScopeType.team, team_id)

    @classmethod
    def user(cls, user_id: str) -> "Scope":
        return cls.parse(ScopeType.user, user_id)


def resolve(
    db: Session,
    organization_id: str,
    scope: str | ScopeType | Scope,
    entity_id: Optional[str] = None,
    include_inactive: bool = False,
) -> frozenset[str]:
    """Return the user ids in scope. Raises InvalidScopeError."""
    if not isinstance(scope, Scope):
        scope = Scope.parse(scope, entity_id)

    if scope.kind == ScopeType.organization:
        query = db.query(User.id).filter(User.organization_id == organization_id)
        if not include_inactive:
            query = query.filter(User.is_active.is_(True))
        return frozenset(row.id for row in query.all())

    if scope.kind == ScopeType.team:
        team = (
            db.query(Team.id)
            .filter(Team.id == scope.entity_id, Team.organization_id == organization_id)
            .first()
        )
        if team is None:
            raise InvalidScopeError(
                f"Team {scope.entity_id} does not exist in this organization.",
                scope=scope.kind.value,
                entity_id=scope.entity_id,
            )
        rows = (
            db.query(User.id)
            .filter(User.organization_id == organization_id, User.team_id == scope.entity_id)
            .all()
        )
        return frozenset(row.id for row in rows)

    user = (
        db.query(User.id)
        .filter(User.id == scope.entity_id, User.organization_id == organization_id)
        .first()
    )
    if user is None:
        raise InvalidScopeError(
            f"User {scope.entity_id} does not exist in this organization.",
            scope=scope.kind.value,
            entity_id=scope.entity_id,
        )
    return frozenset({scope.entity_id})
