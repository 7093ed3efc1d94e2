"""Domain layer: entities and value objects. No dependencies on outer layers."""

from contact_identity.domain.entities import Contact, LinkPrecedence, utcnow

__all__ = ["Contact", "LinkPrecedence", "utcnow"]
