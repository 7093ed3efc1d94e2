"""Domain entities: Contact and LinkPrecedence."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class Contact:
    """
    One stored contact record (an email and/or phone number seen together).

    A primary is the canonical record of an identity group; a secondary defers
    to the primary referenced by linked_id. Stored data may be inconsistent
    (a secondary without linked_id), so links are not checked here; the
    identity service repairs them.
    """

    id: int
    email: str | None = None
    phone_number: str | None = None
    link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY
    linked_id: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: datetime | None = None

    def __post_init__(self):
        object.__setattr__(self, "link_precedence", LinkPrecedence(self.link_precedence))

    @property
    def is_primary(self) -> bool:
        return self.link_precedence is LinkPrecedence.PRIMARY

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def age_key(self) -> tuple[datetime, int]:
        """Sort key for "oldest first": creation time, then id."""
        return (self.created_at, self.id)
