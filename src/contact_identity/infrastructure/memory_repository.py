"""In-memory implementation of ContactRepository (no DB)."""

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime

from contact_identity.application.dto import ContactFilter, ContactPatch, NewContact
from contact_identity.domain import Contact, LinkPrecedence, utcnow


def _matches(contact: Contact, criteria: ContactFilter) -> bool:
    return (
        (criteria.email is not None and contact.email == criteria.email)
        or (
            criteria.phone_number is not None
            and contact.phone_number == criteria.phone_number
        )
        or contact.id in criteria.ids
        or (contact.linked_id is not None and contact.linked_id in criteria.linked_ids)
    )


def _apply(contact: Contact, patch: ContactPatch) -> Contact:
    changes: dict = {"updated_at": patch.updated_at}
    if patch.link_precedence is not None:
        changes["link_precedence"] = patch.link_precedence
    if patch.linked_id is not None:
        changes["linked_id"] = patch.linked_id
    if patch.link_precedence is LinkPrecedence.PRIMARY:
        changes["linked_id"] = None
    return replace(contact, **changes)


class InMemoryContactRepository:
    """Stores contacts in a dict keyed by id. Ids are issued from a counter starting at 1.

    One re-entrant lock serializes every operation; a transaction holds it for
    its whole block, so transactions are serializable. A block that raises is
    rolled back to the snapshot taken when it began.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._by_id: dict[int, Contact] = {}
        self._last_id = 0

    def find_contacts(self, criteria: ContactFilter) -> list[Contact]:
        if criteria.is_empty():
            return []
        with self._lock:
            found = [
                c
                for c in self._by_id.values()
                if not c.is_deleted and _matches(c, criteria)
            ]
        return sorted(found, key=lambda c: c.age_key)

    def create_contact(self, fields: NewContact) -> Contact:
        with self._lock:
            self._last_id += 1
            now = self._clock()
            contact = Contact(
                id=self._last_id,
                email=fields.email,
                phone_number=fields.phone_number,
                link_precedence=fields.link_precedence,
                linked_id=fields.linked_id,
                created_at=now,
                updated_at=now,
            )
            self._by_id[contact.id] = contact
            return contact

    def update_contacts(self, ids: set[int], patch: ContactPatch) -> int:
        with self._lock:
            targets = [cid for cid in ids if cid in self._by_id]
            for cid in targets:
                self._by_id[cid] = _apply(self._by_id[cid], patch)
            return len(targets)

    def lock_contacts(self, ids: set[int]) -> list[Contact]:
        # The repository lock is already held by the enclosing transaction.
        return self.find_contacts(ContactFilter(ids=frozenset(ids)))

    @contextmanager
    def transaction(self) -> Iterator["InMemoryContactRepository"]:
        with self._lock:
            snapshot = dict(self._by_id)
            last_id = self._last_id
            try:
                yield self
            except BaseException:
                self._by_id = snapshot
                self._last_id = last_id
                raise

    def soft_delete(self, contact_id: int) -> bool:
        """Mark a contact deleted so it drops out of every query. Returns False if unknown."""
        with self._lock:
            contact = self._by_id.get(contact_id)
            if contact is None:
                return False
            now = self._clock()
            self._by_id[contact_id] = replace(contact, deleted_at=now, updated_at=now)
            return True

    def get_by_id(self, contact_id: int) -> Contact | None:
        """Return the stored contact, deleted or not."""
        with self._lock:
            return self._by_id.get(contact_id)

    def list_all(self) -> list[Contact]:
        """All stored contacts, deleted included, in id order."""
        with self._lock:
            return [self._by_id[cid] for cid in sorted(self._by_id)]
