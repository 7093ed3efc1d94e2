"""
Contact identity reconciliation: clean-architecture layout.

- domain: entities (Contact, LinkPrecedence). No outer dependencies.
- application: use case (IdentityService), ports (ContactRepository), DTOs, errors.
- infrastructure: adapters (InMemoryContactRepository, Neo4jContactRepository), phone normalization.
"""

from contact_identity.application import (
    ConsolidatedContact,
    ContactRepository,
    IdentityService,
    PersistenceError,
    ValidationError,
)
from contact_identity.domain import Contact, LinkPrecedence
from contact_identity.infrastructure import (
    InMemoryContactRepository,
    Neo4jContactRepository,
)

__all__ = [
    "ConsolidatedContact",
    "Contact",
    "ContactRepository",
    "IdentityService",
    "InMemoryContactRepository",
    "LinkPrecedence",
    "Neo4jContactRepository",
    "PersistenceError",
    "ValidationError",
]
