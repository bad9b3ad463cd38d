"""
PKCE (RFC 7636) and authorization request helpers for SSO login initiation.
S256 only.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from urllib.parse import urlencode, urlsplit, urlunsplit


def generate_code_verifier() -> str:
    """43 chars base64url (256 bits entropy), per RFC 7636 recommendation."""
    return secrets.token_urlsafe(32)


def code_challenge_s256(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """Returns (code_verifier, code_challenge)."""
    code_verifier = generate_code_verifier()
    return code_verifier, code_challenge_s256(code_verifier)


def build_authorize_url(
    *,
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str,
) -> str:
    """Build the provider's authorization URL. Keeps any query the endpoint already carries."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": scope,
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    parts = urlsplit(authorization_endpoint)
    query = f"{parts.query}&{urlencode(params)}" if parts.query else urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))
