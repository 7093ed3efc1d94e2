"""Infrastructure layer: concrete implementations of application ports."""

from contact_identity.infrastructure.memory_repository import InMemoryContactRepository
from contact_identity.infrastructure.persistence.neo4j_repository import (
    Neo4jContactRepository,
    Neo4jContactUnitOfWork,
    ensure_contact_schema,
)
from contact_identity.infrastructure.phone import e164_normalizer, normalize_phone

__all__ = [
    "InMemoryContactRepository",
    "Neo4jContactRepository",
    "Neo4jContactUnitOfWork",
    "e164_normalizer",
    "ensure_contact_schema",
    "normalize_phone",
]
