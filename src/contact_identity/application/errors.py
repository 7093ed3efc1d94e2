"""Errors surfaced by the identity service to its callers."""


class IdentityError(Exception):
    """Base class for identity reconciliation failures."""


class ValidationError(IdentityError, ValueError):
    """The request is unusable as given (client fault). Raised before any store access."""


class PersistenceError(IdentityError):
    """A store operation failed (server fault). Not retried by the service.

    Retrying the whole identify call is safe: matching, resolution and merging
    re-derive the group state from what is stored.
    """
