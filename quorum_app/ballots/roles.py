from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping

from django.conf import settings

from ballots.models import Ballot, OrganizationMembership, VoteEvent


class ActorRole(enum.StrEnum):
    user = VoteEvent.ActorRole.user.value
    admin = VoteEvent.ActorRole.admin.value
    owner = VoteEvent.ActorRole.owner.value


ADMIN_ROLES: frozenset[ActorRole] = frozenset({ActorRole.admin, ActorRole.owner})

# Highest privilege wins when a user carries several role claims.
_ROLE_RANK: dict[ActorRole, int] = {
    ActorRole.user: 0,
    ActorRole.admin: 1,
    ActorRole.owner: 2,
}


def role_claim_map(raw: Mapping[str, str] | None = None) -> dict[str, ActorRole]:
    """Validate the external-claim -> role table.

    Claim values come from the identity provider (group names); the table is
    the only place they are turned into an ActorRole. Unknown role names are a
    configuration error, not something to guess at request time.
    """

    source = settings.BALLOT_ROLE_GROUPS if raw is None else raw
    mapping: dict[str, ActorRole] = {}
    for claim, role_name in source.items():
        try:
            mapping[str(claim).strip().lower()] = ActorRole(str(role_name).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown ballot role {role_name!r} for claim {claim!r}") from exc
    return mapping


def actor_role_from_claims(claims: Iterable[str], *, mapping: Mapping[str, ActorRole] | None = None) -> ActorRole:
    table = role_claim_map() if mapping is None else mapping
    role = ActorRole.user
    for claim in claims:
        candidate = table.get(str(claim or "").strip().lower())
        if candidate is not None and _ROLE_RANK[candidate] > _ROLE_RANK[role]:
            role = candidate
    return role


def actor_role_for_user(user: object) -> ActorRole:
    if not getattr(user, "is_authenticated", False):
        return ActorRole.user
    groups = getattr(user, "groups", None)
    if groups is None:
        return ActorRole.user
    return actor_role_from_claims(groups.values_list("name", flat=True))


def ballot_admin_role(*, user: object, ballot: Ballot) -> ActorRole | None:
    """Return the role a user may act with when overriding votes on a ballot.

    The ballot creator counts as owner even without a role claim, and owners
    and admins of the ballot's organization keep their organization role.
    """

    role = actor_role_for_user(user)
    if role in ADMIN_ROLES:
        return role

    user_id = getattr(user, "pk", None)
    if user_id is None:
        return None
    if ballot.creator_id == user_id:
        return ActorRole.owner

    if ballot.organization_id is not None:
        org_role = (
            OrganizationMembership.objects.filter(organization_id=ballot.organization_id, user_id=user_id)
            .values_list("role", flat=True)
            .first()
        )
        if org_role == OrganizationMembership.Role.owner:
            return ActorRole.owner
        if org_role == OrganizationMembership.Role.admin:
            return ActorRole.admin

    return None
