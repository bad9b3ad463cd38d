"""
Errors raised by per-login operations. Initialization problems are not raised;
they are reported through LoginFlow.state / LoginFlow.failure.
"""


class SSOError(Exception):
    """Base class for SSO login failures surfaced to the caller."""


class NotInitializedError(SSOError):
    """Provider session is not ready (disabled, misconfigured or discovery failed)."""

    def __init__(self, message: str = "OIDC client not initialized"):
        super().__init__(message)


class ExpiredOrUnknownStateError(SSOError):
    """No pending verifier for this state: expired, evicted, replayed or forged."""

    def __init__(self, message: str = "Invalid state or code verifier expired"):
        super().__init__(message)


class TokenExchangeError(SSOError):
    """Callback rejected or the authorization-code exchange failed."""


class MissingSubjectClaimError(SSOError):
    def __init__(self, message: str = "No subject (sub) claim found in ID token"):
        super().__init__(message)


class MissingEmailClaimError(SSOError):
    def __init__(self, message: str = "No email found in OIDC claims"):
        super().__init__(message)


class UserInfoError(SSOError):
    """Userinfo request failed or returned claims for a different subject."""
