"""Application ports (interfaces). Implemented by infrastructure adapters."""

from contextlib import AbstractContextManager
from typing import Protocol

from contact_identity.application.dto import ContactFilter, ContactPatch, NewContact
from contact_identity.domain import Contact


class ContactStore(Protocol):
    """The store operations the identity service needs. Failures raise PersistenceError."""

    def find_contacts(self, criteria: ContactFilter) -> list[Contact]:
        """Return non-deleted contacts matching any criterion, oldest first (created_at, id)."""
        ...

    def create_contact(self, fields: NewContact) -> Contact:
        """Insert a contact, assigning a new monotonically increasing id and created_at."""
        ...

    def update_contacts(self, ids: set[int], patch: ContactPatch) -> int:
        """Apply the patch to every contact with an id in ids. Returns the number updated."""
        ...


class ContactUnitOfWork(ContactStore, Protocol):
    """Store operations bound to one open transaction."""

    def lock_contacts(self, ids: set[int]) -> list[Contact]:
        """Take write locks on the given contacts until the transaction ends; return them fresh."""
        ...


class ContactRepository(ContactStore, Protocol):
    """Persists contacts and opens transactions."""

    def transaction(self) -> AbstractContextManager[ContactUnitOfWork]:
        """Commit on normal exit, roll back if the block raises."""
        ...
