from __future__ import annotations


class AuthError(Exception):
    """Base authentication error."""


class ConfigurationMissing(AuthError):
    """An integration (e.g. the external login provider) is not configured."""


class CsrfRejected(AuthError):
    """Request origin or OAuth state did not match. No side effects may follow."""


class SessionInvalid(AuthError):
    """Absent, malformed, expired or revoked session token.

    Never surfaced to clients as anything other than "no session".
    """


class PersistenceUnavailable(AuthError):
    """The session/identity store could not be reached.

    Callers must answer with a generic server fault, never treat it as authenticated.
    """


class ProviderError(AuthError):
    """The external identity provider returned an unusable response."""


class InvalidCredentials(AuthError):
    """Invalid email or password."""


class IdentityConflict(AuthError):
    """An identity with the same email (or provider subject) already exists."""
