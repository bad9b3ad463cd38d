"""
Identity provider settings, role configuration and OIDC discovery.
A ProviderSession is an immutable snapshot; settings changes build a new one.
"""
import enum
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import httpx

from sso_login.config import (
    DEFAULT_REDIRECT_URI,
    DEFAULT_ROLE,
    DEFAULT_ROLE_CLAIM_PATH,
    DEFAULT_SCOPE,
    ROLE_PRIORITY,
)

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"


class ProviderState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    DISABLED = "disabled"
    FAILED = "failed"
    READY = "ready"


class InitFailure(enum.Enum):
    MISCONFIGURED = "misconfigured"
    DISCOVERY_FAILED = "discovery_failed"


class DiscoveryError(Exception):
    """Discovery document missing, unreachable or inconsistent. Never escapes LoginFlow.initialize."""


def _default_role_mapping() -> Mapping[str, str]:
    return MappingProxyType({role: role for role in ROLE_PRIORITY})


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return value is True or value == 1


@dataclass(frozen=True)
class RoleConfig:
    role_claim_path: str = DEFAULT_ROLE_CLAIM_PATH
    role_name_mapping: Mapping[str, str] = field(default_factory=_default_role_mapping)
    default_role: str = DEFAULT_ROLE


@dataclass(frozen=True)
class ProviderSettings:
    """Settings as read from the settings collaborator (same shape initialize() accepts)."""

    enabled: bool = False
    issuer_url: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scope: str = DEFAULT_SCOPE
    role_claim_path: str = DEFAULT_ROLE_CLAIM_PATH
    role_name_mapping: Mapping[str, str] = field(default_factory=_default_role_mapping)
    default_role: str = DEFAULT_ROLE

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProviderSettings":
        """Accept a settings row (snake_case, enabled as 0/1) or camelCase keys."""
        mapping = _pick(data, "role_name_mapping", "roleNameMapping", "role_mapping", "roleMapping")
        return cls(
            enabled=_as_bool(data.get("enabled")),
            issuer_url=_pick(data, "issuer_url", "issuerUrl"),
            client_id=_pick(data, "client_id", "clientId"),
            client_secret=_pick(data, "client_secret", "clientSecret"),
            redirect_uri=_pick(data, "redirect_uri", "redirectUri") or DEFAULT_REDIRECT_URI,
            scope=_pick(data, "scope") or DEFAULT_SCOPE,
            role_claim_path=_pick(data, "role_claim_path", "roleClaimPath") or DEFAULT_ROLE_CLAIM_PATH,
            role_name_mapping=MappingProxyType(dict(mapping)) if mapping else _default_role_mapping(),
            default_role=_pick(data, "default_role", "defaultRole") or DEFAULT_ROLE,
        )

    @property
    def role_config(self) -> RoleConfig:
        return RoleConfig(
            role_claim_path=self.role_claim_path,
            role_name_mapping=self.role_name_mapping,
            default_role=self.default_role,
        )


@dataclass(frozen=True)
class ProviderMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str | None = None
    jwks_uri: str | None = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "ProviderMetadata":
        for key in ("issuer", "authorization_endpoint", "token_endpoint"):
            if not isinstance(doc.get(key), str) or not doc[key]:
                raise DiscoveryError(f"Discovery document missing {key}")
        return cls(
            issuer=doc["issuer"],
            authorization_endpoint=doc["authorization_endpoint"],
            token_endpoint=doc["token_endpoint"],
            userinfo_endpoint=doc.get("userinfo_endpoint"),
            jwks_uri=doc.get("jwks_uri"),
        )


@dataclass(frozen=True)
class ProviderSession:
    issuer_url: str
    client_id: str
    client_secret: str | None
    redirect_uri: str
    scope: str
    metadata: ProviderMetadata


def _normalize_issuer(url: str) -> str:
    return url.rstrip("/")


def discover(http_client: httpx.Client, settings: ProviderSettings, timeout: float) -> ProviderSession:
    """
    Resolve the issuer's OpenID configuration and build a session.
    Raises DiscoveryError on any network, HTTP or document problem.
    """
    issuer = _normalize_issuer(settings.issuer_url or "")
    url = f"{issuer}{DISCOVERY_PATH}"
    try:
        r = http_client.get(url, headers={"Accept": "application/json"}, timeout=timeout)
        r.raise_for_status()
        doc = r.json()
    except httpx.HTTPError as e:
        raise DiscoveryError(f"Discovery request failed: {e}") from e
    except ValueError as e:
        raise DiscoveryError("Discovery response is not JSON") from e
    if not isinstance(doc, dict):
        raise DiscoveryError("Discovery response is not a JSON object")

    metadata = ProviderMetadata.from_document(doc)
    if _normalize_issuer(metadata.issuer) != issuer:
        raise DiscoveryError(f"Issuer mismatch: expected {issuer}, got {metadata.issuer}")

    return ProviderSession(
        issuer_url=issuer,
        client_id=settings.client_id or "",
        client_secret=settings.client_secret,
        redirect_uri=settings.redirect_uri,
        scope=settings.scope,
        metadata=metadata,
    )
