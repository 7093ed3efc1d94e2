"""Data passed across the service boundary and to the store ports."""

from dataclasses import dataclass, field
from datetime import datetime

from contact_identity.domain import LinkPrecedence, utcnow


@dataclass(frozen=True)
class ContactFilter:
    """
    Disjunctive predicate for ContactStore.find_contacts.

    A contact matches when ANY given criterion holds: email equals, phone
    number equals, id in ids, linked_id in linked_ids. Criteria left as None
    or empty are omitted. Soft-deleted contacts never match.
    """

    email: str | None = None
    phone_number: str | None = None
    ids: frozenset[int] = frozenset()
    linked_ids: frozenset[int] = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "ids", frozenset(self.ids))
        object.__setattr__(self, "linked_ids", frozenset(self.linked_ids))

    @classmethod
    def group_of(cls, primary_ids) -> "ContactFilter":
        """Every contact that is, or links to, one of the given ids."""
        ids = frozenset(primary_ids)
        return cls(ids=ids, linked_ids=ids)

    def is_empty(self) -> bool:
        return (
            self.email is None
            and self.phone_number is None
            and not self.ids
            and not self.linked_ids
        )


@dataclass(frozen=True)
class NewContact:
    """Fields for ContactStore.create_contact. The store assigns id and timestamps."""

    email: str | None = None
    phone_number: str | None = None
    link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY
    linked_id: int | None = None


@dataclass(frozen=True)
class ContactPatch:
    """
    Bulk update applied by ContactStore.update_contacts.

    None leaves a field untouched. Setting link_precedence to PRIMARY also
    clears linked_id.
    """

    link_precedence: LinkPrecedence | None = None
    linked_id: int | None = None
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ConsolidatedContact:
    """Result of identify: the canonical identity and everything known about it."""

    primary_contact_id: int
    emails: list[str]
    phone_numbers: list[str]
    secondary_contact_ids: list[int]
