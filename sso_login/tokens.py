"""
Token endpoint exchange, ID token verification (JWKS, RS256) and userinfo fetch.
Network-bound steps of the login handshake; nothing here touches the verifier store.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx
import jwt

from sso_login.errors import TokenExchangeError, UserInfoError
from sso_login.provider import ProviderSession

logger = logging.getLogger(__name__)

ID_TOKEN_ALGORITHMS = ["RS256"]
# Clock skew tolerated when checking exp/iat on the ID token (seconds)
ID_TOKEN_LEEWAY = 30


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    token_type: str
    id_token: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    id_token_claims: Mapping[str, Any] = field(default_factory=dict, repr=False)
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    def claims(self) -> dict[str, Any]:
        """Verified ID token claims (empty when the provider issued no ID token)."""
        return dict(self.id_token_claims)


def _error_description(r: httpx.Response) -> str:
    """OAuth error body (error_description / error) or raw text."""
    try:
        err = r.json() if r.headers.get("content-type", "").startswith("application/json") else {}
    except ValueError:
        err = {}
    if not isinstance(err, dict):
        err = {}
    return str(err.get("error_description", err.get("error", r.text)) or f"HTTP {r.status_code}")


def validate_callback_params(session: ProviderSession, params: Mapping[str, Any], expected_state: str) -> str:
    """
    Check the authorization response before spending the code.
    Returns the authorization code. Raises TokenExchangeError.
    """
    if params.get("error"):
        raise TokenExchangeError(
            f"Authorization failed: {params.get('error_description') or params['error']}"
        )
    if params.get("state") != expected_state:
        raise TokenExchangeError("State mismatch in authorization response")
    iss = params.get("iss")
    if iss is not None:
        if not isinstance(iss, str):
            raise TokenExchangeError("Malformed iss in authorization response")
        if iss.rstrip("/") != session.metadata.issuer.rstrip("/"):
            raise TokenExchangeError("Issuer mismatch in authorization response")
    code = params.get("code")
    if not code:
        raise TokenExchangeError("Authorization code missing")
    return code


def exchange_code(
    http_client: httpx.Client,
    session: ProviderSession,
    code: str,
    code_verifier: str,
    timeout: float,
) -> dict[str, Any]:
    """POST authorization_code grant. Returns the token response. Raises TokenExchangeError."""
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": session.redirect_uri,
        "client_id": session.client_id,
        "code_verifier": code_verifier,
    }
    if session.client_secret:
        data["client_secret"] = session.client_secret
    try:
        r = http_client.post(
            session.metadata.token_endpoint,
            data=data,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        raise TokenExchangeError(f"Token request failed: {e}") from e

    if r.status_code != 200:
        raise TokenExchangeError(f"Token exchange failed: {_error_description(r)}")
    try:
        body = r.json()
    except ValueError as e:
        raise TokenExchangeError("Token response is not JSON") from e
    if not isinstance(body, dict) or not body.get("access_token"):
        raise TokenExchangeError("Token response missing access_token")
    return body


def verify_id_token(
    http_client: httpx.Client,
    session: ProviderSession,
    id_token: str,
    timeout: float,
) -> dict[str, Any]:
    """
    Verify ID token signature via the provider JWKS and validate iss, aud, exp.
    Returns decoded claims. Raises TokenExchangeError.
    """
    if not session.metadata.jwks_uri:
        raise TokenExchangeError("Provider publishes no jwks_uri; cannot verify ID token")
    try:
        r = http_client.get(session.metadata.jwks_uri, headers={"Accept": "application/json"}, timeout=timeout)
        r.raise_for_status()
        doc = r.json()
        if not isinstance(doc, dict):
            raise TokenExchangeError("JWKS response is invalid")
        jwk_set = jwt.PyJWKSet.from_dict(doc)
    except httpx.HTTPError as e:
        raise TokenExchangeError(f"JWKS request failed: {e}") from e
    except (ValueError, jwt.PyJWTError) as e:
        raise TokenExchangeError("JWKS response is invalid") from e

    try:
        kid = jwt.get_unverified_header(id_token).get("kid")
        keys = [k for k in jwk_set.keys if kid is None or k.key_id == kid]
        if not keys:
            raise TokenExchangeError("No JWKS key matches the ID token kid")
        return jwt.decode(
            id_token,
            keys[0].key,
            algorithms=ID_TOKEN_ALGORITHMS,
            audience=session.client_id,
            issuer=session.metadata.issuer,
            leeway=ID_TOKEN_LEEWAY,
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenExchangeError("ID token expired") from e
    except jwt.InvalidAudienceError as e:
        raise TokenExchangeError("ID token audience mismatch") from e
    except jwt.InvalidIssuerError as e:
        raise TokenExchangeError("ID token issuer mismatch") from e
    except jwt.InvalidTokenError as e:
        logger.debug("ID token verification failed: %s", e)
        raise TokenExchangeError("ID token verification failed") from e


def build_token_set(body: Mapping[str, Any], id_token_claims: Mapping[str, Any]) -> TokenSet:
    return TokenSet(
        access_token=body["access_token"],
        token_type=body.get("token_type", "Bearer"),
        id_token=body.get("id_token"),
        expires_in=body.get("expires_in"),
        refresh_token=body.get("refresh_token"),
        scope=body.get("scope"),
        id_token_claims=dict(id_token_claims),
        raw=dict(body),
    )


def fetch_userinfo(
    http_client: httpx.Client,
    session: ProviderSession,
    access_token: str,
    expected_sub: str,
    timeout: float,
) -> dict[str, Any]:
    """GET userinfo with the access token; the returned sub must match the ID token's."""
    if not session.metadata.userinfo_endpoint:
        raise UserInfoError("Provider publishes no userinfo_endpoint")
    try:
        r = http_client.get(
            session.metadata.userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            timeout=timeout,
        )
    except httpx.HTTPError as e:
        raise UserInfoError(f"Userinfo request failed: {e}") from e
    if r.status_code != 200:
        raise UserInfoError(f"Userinfo request failed: {_error_description(r)}")
    try:
        claims = r.json()
    except ValueError as e:
        raise UserInfoError("Userinfo response is not JSON") from e
    if not isinstance(claims, dict):
        raise UserInfoError("Userinfo response is not a JSON object")
    if claims.get("sub") != expected_sub:
        raise UserInfoError("Userinfo subject does not match ID token subject")
    return claims
