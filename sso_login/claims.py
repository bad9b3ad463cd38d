"""
Projection of identity provider claims onto the internal user profile:
nested role-claim extraction, priority-ordered role mapping, name/email derivation.
Pure functions; no provider or store access.
"""
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from sso_login.config import ROLE_PRIORITY
from sso_login.errors import MissingEmailClaimError
from sso_login.provider import RoleConfig


@dataclass(frozen=True)
class InternalProfile:
    email: str
    first_name: str
    last_name: str
    full_name: str
    role: str
    provider_subject: str | None
    manager_first_name: str | None = None
    manager_last_name: str | None = None
    manager_email: str | None = None


def extract_roles(claims: Mapping[str, Any], role_claim_path: str) -> list:
    """
    Walk role_claim_path ("resource_access.myapp.roles") through nested claim objects.
    A list is returned as-is, a single string becomes [string]; anything else yields [].
    """
    value: Any = claims
    for segment in role_claim_path.split("."):
        if not isinstance(value, Mapping):
            return []
        value = value.get(segment)
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [value]
    return []


def map_role(
    oidc_roles: Sequence[Any],
    role_name_mapping: Mapping[str, str],
    default_role: str,
) -> str:
    """First internal role (admin, manager, employee) whose provider name matches, case-insensitively."""
    provided = {r.lower() for r in oidc_roles if isinstance(r, str)}
    for role in ROLE_PRIORITY:
        provider_name = role_name_mapping.get(role)
        if provider_name and provider_name.lower() in provided:
            return role
    return default_role


def _first(claims: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if claims.get(key):
            return claims[key]
    return None


def _split_name(name: str | None) -> tuple[str, str]:
    if not name:
        return "", ""
    parts = name.split(" ")
    return parts[0], " ".join(parts[1:])


def _manager_fields(claims: Mapping[str, Any]) -> tuple[str | None, str | None, str | None]:
    manager_email = _first(claims, "manager_email", "manager", "managerId", "manager_id")
    first = _first(claims, "manager_first_name", "managerFirstName")
    last = _first(claims, "manager_last_name", "managerLastName")
    manager_name = claims.get("manager_name")
    if not first and not last and isinstance(manager_name, str) and manager_name.strip():
        parts = manager_name.split()
        first = parts[0]
        last = " ".join(parts[1:]) or None
    return first, last, manager_email


def extract_user_data(claims: Mapping[str, Any], role_config: RoleConfig) -> InternalProfile:
    email = _first(claims, "email", "preferred_username")
    if not email:
        raise MissingEmailClaimError()

    name = claims.get("name") or None
    split_first, split_last = _split_name(name)
    first_name = claims.get("given_name") or split_first
    last_name = claims.get("family_name") or split_last
    full_name = name or f"{first_name} {last_name}".strip() or email.split("@")[0]

    roles = extract_roles(claims, role_config.role_claim_path)
    role = map_role(roles, role_config.role_name_mapping, role_config.default_role)
    manager_first_name, manager_last_name, manager_email = _manager_fields(claims)

    return InternalProfile(
        email=email,
        first_name=first_name,
        last_name=last_name,
        full_name=full_name,
        role=role,
        provider_subject=claims.get("sub"),
        manager_first_name=manager_first_name,
        manager_last_name=manager_last_name,
        manager_email=manager_email,
    )
