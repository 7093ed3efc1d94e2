"""Application layer: identity service, ports, DTOs and errors. Depends only on domain."""

from contact_identity.application.dto import (
    ConsolidatedContact,
    ContactFilter,
    ContactPatch,
    NewContact,
)
from contact_identity.application.errors import (
    IdentityError,
    PersistenceError,
    ValidationError,
)
from contact_identity.application.identity_service import IdentityService, consolidate
from contact_identity.application.ports import (
    ContactRepository,
    ContactStore,
    ContactUnitOfWork,
)

__all__ = [
    "ConsolidatedContact",
    "ContactFilter",
    "ContactPatch",
    "ContactRepository",
    "ContactStore",
    "ContactUnitOfWork",
    "IdentityError",
    "IdentityService",
    "NewContact",
    "PersistenceError",
    "ValidationError",
    "consolidate",
]
