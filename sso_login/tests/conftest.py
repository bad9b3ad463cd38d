"""
Pytest configuration for sso_login. In-memory SQLite, a manual timer scheduler,
and a fake OIDC provider (FastAPI app driven through TestClient, which is an httpx.Client).
"""
import base64
import hashlib
import os
import secrets
import time
from base64 import urlsafe_b64encode

# In-memory SQLite; database.py uses StaticPool so all connections share the same DB
os.environ["SSO_DATABASE_URL"] = "sqlite:///:memory:"

import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key
from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.testclient import TestClient

from sso_login.flow import LoginFlow
from sso_login.verifier_store import VerifierStore

ISSUER = "https://idp.example"
CLIENT_ID = "c1"
CLIENT_SECRET = "s3cret"
REDIRECT_URI = "https://app.example/auth/callback"


class ManualTimer:
    def __init__(self, delay: float, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Stands in for threading.Timer: records timers, fires them on demand."""

    def __init__(self):
        self.started: list[ManualTimer] = []

    def __call__(self, delay, callback) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.started.append(timer)
        return timer

    @property
    def live(self) -> list[ManualTimer]:
        return [t for t in self.started if not t.cancelled and not t.fired]

    def fire(self, timer: ManualTimer) -> None:
        timer.fired = True
        timer.callback()


def _b64url_int(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class FakeProvider:
    """
    Minimal OIDC provider: discovery, JWKS, token (authorization_code + PKCE S256), userinfo.
    Tests register codes with issue_code(); claims given there end up in the ID token and userinfo.
    """

    def __init__(self, issuer: str = ISSUER, client_id: str = CLIENT_ID):
        self.issuer = issuer
        self.client_id = client_id
        self.key = generate_private_key(65537, 2048, default_backend())
        self.kid = "test-key"
        self.codes: dict[str, dict] = {}
        self.access_tokens: dict[str, dict] = {}
        self.token_requests: list[dict] = []
        self.userinfo_requests = 0
        self.discovery_requests = 0
        self.discovery_issuer = issuer
        self.id_token_audience = client_id
        self.userinfo_overrides: dict = {}
        self.app = self._build_app()

    def issue_code(self, code_challenge: str, claims: dict) -> str:
        code = secrets.token_urlsafe(16)
        self.codes[code] = {"code_challenge": code_challenge, "claims": dict(claims)}
        return code

    def jwks(self) -> dict:
        numbers = self.key.public_key().public_numbers()
        return {
            "keys": [
                {
                    "kty": "RSA",
                    "kid": self.kid,
                    "alg": "RS256",
                    "use": "sig",
                    "n": _b64url_int(numbers.n),
                    "e": _b64url_int(numbers.e),
                }
            ]
        }

    def sign_id_token(self, claims: dict, *, key=None) -> str:
        now = int(time.time())
        payload = {"iss": self.issuer, "aud": self.id_token_audience, "iat": now, "exp": now + 300}
        payload.update(claims)
        return jwt.encode(payload, key or self.key, algorithm="RS256", headers={"kid": self.kid})

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="Fake IdP")

        @app.get("/.well-known/openid-configuration")
        def openid_configuration():
            self.discovery_requests += 1
            return {
                "issuer": self.discovery_issuer,
                "authorization_endpoint": f"{self.issuer}/authorize",
                "token_endpoint": f"{self.issuer}/token",
                "userinfo_endpoint": f"{self.issuer}/userinfo",
                "jwks_uri": f"{self.issuer}/.well-known/jwks.json",
                "response_types_supported": ["code"],
                "code_challenge_methods_supported": ["S256"],
            }

        @app.get("/.well-known/jwks.json")
        def jwks_json():
            return self.jwks()

        @app.post("/token")
        def token(
            grant_type: str = Form(...),
            code: str | None = Form(None),
            redirect_uri: str | None = Form(None),
            client_id: str = Form(...),
            code_verifier: str | None = Form(None),
            client_secret: str | None = Form(None),
        ):
            self.token_requests.append(
                {"code": code, "client_id": client_id, "redirect_uri": redirect_uri, "client_secret": client_secret}
            )
            if grant_type != "authorization_code":
                raise HTTPException(status_code=400, detail={"error": "unsupported_grant_type"})
            entry = self.codes.pop(code or "", None)
            if entry is None:
                raise HTTPException(status_code=400, detail={"error": "invalid_grant"})
            if client_id != self.client_id:
                raise HTTPException(status_code=401, detail={"error": "invalid_client"})
            digest = hashlib.sha256((code_verifier or "").encode("ascii")).digest()
            if urlsafe_b64encode(digest).rstrip(b"=").decode("ascii") != entry["code_challenge"]:
                raise HTTPException(status_code=400, detail={"error": "invalid_grant"})
            access_token = secrets.token_urlsafe(24)
            self.access_tokens[access_token] = entry["claims"]
            body = {"access_token": access_token, "token_type": "Bearer", "expires_in": 60, "scope": "openid"}
            if "sub" in entry["claims"]:
                body["id_token"] = self.sign_id_token(entry["claims"])
            return body

        @app.get("/userinfo")
        def userinfo(request: Request):
            self.userinfo_requests += 1
            auth = request.headers.get("Authorization", "")
            claims = self.access_tokens.get(auth.removeprefix("Bearer "))
            if claims is None:
                raise HTTPException(status_code=401, detail="Invalid or expired token")
            return {**claims, **self.userinfo_overrides}

        return app


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def idp_client(provider):
    return TestClient(provider.app, base_url=ISSUER)


@pytest.fixture
def settings():
    return {
        "enabled": True,
        "issuerUrl": ISSUER,
        "clientId": CLIENT_ID,
        "clientSecret": CLIENT_SECRET,
        "redirectUri": REDIRECT_URI,
        "roleClaimPath": "resource_access.myapp.roles",
    }


@pytest.fixture
def flow(idp_client, timers):
    return LoginFlow(http_client=idp_client, verifier_store=VerifierStore(max_size=10, start_timer=timers))


@pytest.fixture
def ready_flow(flow, settings):
    assert flow.initialize(settings) is not None
    return flow
