"""
SSO login configuration. Operational tunables come from env; provider settings
(issuer, client credentials, role mapping) come from the settings collaborator.
"""
import os

# How long a PKCE code verifier stays retrievable after the authorization URL is issued (10 minutes)
PKCE_VERIFIER_TIMEOUT_MS = int(os.environ.get("SSO_PKCE_VERIFIER_TIMEOUT_MS", "600000"))

# Cap on concurrently in-flight logins; oldest pending verifier is evicted beyond this
MAX_VERIFIER_STORE_SIZE = int(os.environ.get("SSO_MAX_VERIFIER_STORE_SIZE", "1000"))

# Timeout (seconds) for discovery, token, JWKS and userinfo requests
HTTP_TIMEOUT = float(os.environ.get("SSO_HTTP_TIMEOUT", "10.0"))

# Defaults applied when the settings row leaves a field empty
DEFAULT_REDIRECT_URI = os.environ.get("SSO_DEFAULT_REDIRECT_URI", "http://localhost:3000/auth/callback")
DEFAULT_SCOPE = os.environ.get("SSO_DEFAULT_SCOPE", "openid email profile")
DEFAULT_ROLE_CLAIM_PATH = "roles"
DEFAULT_ROLE = "employee"

# Internal roles in mapping priority order (first match wins)
ROLE_PRIORITY = ("admin", "manager", "employee")

# SQLite for development; accounts and the settings row live here
DATABASE_URL = os.environ.get("SSO_DATABASE_URL", "sqlite:///./sso_login.db")
