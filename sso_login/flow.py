"""
SSO login flow controller: Authorization Code + PKCE against an OIDC provider.

  authorization_url(state)        -> redirect URL (verifier stored under state)
  handle_callback(params, state)  -> TokenSet (verifier taken, code exchanged, ID token verified)
  fetch_identity_claims(tokens)   -> userinfo claims (cross-checked against ID token sub)
  extract_user_data(claims)       -> InternalProfile (email, names, mapped role, subject)

The active provider session and role config form one immutable snapshot that
initialize() swaps in; every operation reads the snapshot once.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from sso_login.claims import InternalProfile, extract_user_data
from sso_login.config import HTTP_TIMEOUT
from sso_login.errors import MissingSubjectClaimError, NotInitializedError, TokenExchangeError
from sso_login.pkce import build_authorize_url, generate_pkce
from sso_login.provider import (
    DiscoveryError,
    InitFailure,
    ProviderSession,
    ProviderSettings,
    ProviderState,
    RoleConfig,
    discover,
)
from sso_login.tokens import (
    TokenSet,
    build_token_set,
    exchange_code,
    fetch_userinfo,
    validate_callback_params,
    verify_id_token,
)
from sso_login.verifier_store import VerifierStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Snapshot:
    state: ProviderState
    settings: ProviderSettings | None = None
    session: ProviderSession | None = None
    role_config: RoleConfig = field(default_factory=RoleConfig)
    failure: InitFailure | None = None


class LoginFlow:
    def __init__(
        self,
        http_client: httpx.Client | None = None,
        verifier_store: VerifierStore | None = None,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        self._owns_client = http_client is None
        self.http_client = http_client if http_client is not None else httpx.Client(timeout=timeout)
        self.verifier_store = verifier_store if verifier_store is not None else VerifierStore()
        self.timeout = timeout
        self._init_lock = threading.Lock()
        self._snapshot = _Snapshot(state=ProviderState.UNINITIALIZED)

    # --- provider session ---

    def initialize(self, settings: ProviderSettings | Mapping[str, Any] | None = None) -> ProviderSession | None:
        """
        Build (or rebuild) the provider session from settings. Never raises:
        disabled, misconfigured and discovery failures leave the flow not ready.
        With no settings, the current session is kept and returned.
        """
        if settings is None:
            return self._snapshot.session
        if not isinstance(settings, ProviderSettings):
            settings = ProviderSettings.from_mapping(settings)

        with self._init_lock:
            role_config = settings.role_config
            if not settings.enabled:
                logger.info("OIDC is disabled")
                self._snapshot = _Snapshot(ProviderState.DISABLED, settings, role_config=role_config)
                return None

            if not settings.issuer_url or not settings.client_id:
                logger.error("OIDC configuration missing: issuer_url and client_id are required")
                self._snapshot = _Snapshot(
                    ProviderState.FAILED, settings, role_config=role_config, failure=InitFailure.MISCONFIGURED
                )
                return None

            logger.info("Initializing OIDC (issuer=%s)", settings.issuer_url)
            try:
                session = discover(self.http_client, settings, self.timeout)
            except DiscoveryError as e:
                logger.error("Failed to initialize OIDC: %s", e)
                self._snapshot = _Snapshot(
                    ProviderState.FAILED, settings, role_config=role_config, failure=InitFailure.DISCOVERY_FAILED
                )
                return None

            self._snapshot = _Snapshot(ProviderState.READY, settings, session, role_config)
            logger.info("OIDC client initialized successfully")
            return session

    def is_enabled(self) -> bool:
        return self._snapshot.state is ProviderState.READY

    @property
    def state(self) -> ProviderState:
        return self._snapshot.state

    @property
    def failure(self) -> InitFailure | None:
        return self._snapshot.failure

    @property
    def session(self) -> ProviderSession | None:
        return self._snapshot.session

    @property
    def role_config(self) -> RoleConfig:
        return self._snapshot.role_config

    def _ready_session(self) -> ProviderSession:
        session = self._snapshot.session
        if session is None:
            raise NotInitializedError()
        return session

    # --- handshake ---

    def authorization_url(self, state: str) -> str:
        """Mint a PKCE pair, hold the verifier under state, return the provider authorization URL."""
        session = self._ready_session()
        code_verifier, code_challenge = generate_pkce()
        self.verifier_store.store(state, code_verifier)
        return build_authorize_url(
            authorization_endpoint=session.metadata.authorization_endpoint,
            client_id=session.client_id,
            redirect_uri=session.redirect_uri,
            scope=session.scope,
            state=state,
            code_challenge=code_challenge,
        )

    def handle_callback(self, callback_params: Mapping[str, Any], state: str) -> TokenSet:
        """
        Retire the verifier for state and exchange the code for tokens.
        Raises ExpiredOrUnknownStateError (no network call) or TokenExchangeError.
        """
        session = self._ready_session()
        code_verifier = self.verifier_store.take(state)
        try:
            code = validate_callback_params(session, callback_params, state)
            body = exchange_code(self.http_client, session, code, code_verifier, self.timeout)
            id_token = body.get("id_token")
            id_claims = verify_id_token(self.http_client, session, id_token, self.timeout) if id_token else {}
        except TokenExchangeError as e:
            # take() has already retired the verifier and its timer
            logger.warning("OIDC token exchange failed: %s", e)
            raise
        return build_token_set(body, id_claims)

    def fetch_identity_claims(self, tokens: TokenSet) -> dict[str, Any]:
        session = self._ready_session()
        sub = tokens.claims().get("sub")
        if not sub:
            raise MissingSubjectClaimError()
        return fetch_userinfo(self.http_client, session, tokens.access_token, sub, self.timeout)

    def extract_user_data(self, claims: Mapping[str, Any]) -> InternalProfile:
        return extract_user_data(claims, self._snapshot.role_config)

    def complete_login(self, callback_params: Mapping[str, Any], state: str) -> InternalProfile:
        """Callback to profile: exchange, userinfo, merge (userinfo wins over ID token), map."""
        tokens = self.handle_callback(callback_params, state)
        userinfo = self.fetch_identity_claims(tokens)
        return self.extract_user_data({**tokens.claims(), **userinfo})

    def close(self) -> None:
        self.verifier_store.clear()
        if self._owns_client:
            self.http_client.close()
