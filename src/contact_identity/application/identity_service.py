"""Identity reconciliation: resolve an email and/or phone number to one canonical contact.

A request flows strictly forward: match stored contacts, expand them into
their identity groups, merge the groups if more than one primary turned up,
then record any new email/phone as a secondary and build the response.
"""

import logging
from collections.abc import Callable, Iterable

from contact_identity.application.dto import (
    ConsolidatedContact,
    ContactFilter,
    ContactPatch,
    NewContact,
)
from contact_identity.application.errors import ValidationError
from contact_identity.application.ports import ContactRepository, ContactStore
from contact_identity.domain import Contact, LinkPrecedence

logger = logging.getLogger(__name__)


def _clean(value: str | int | None) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def _oldest_first(contacts: Iterable[Contact]) -> list[Contact]:
    return sorted(contacts, key=lambda c: c.age_key)


def _distinct(values: Iterable[str | None]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


def _brings_new_value(
    group: list[Contact], email: str | None, phone_number: str | None
) -> bool:
    known_emails = {c.email for c in group if c.email}
    known_phones = {c.phone_number for c in group if c.phone_number}
    return (email is not None and email not in known_emails) or (
        phone_number is not None and phone_number not in known_phones
    )


def group_root_id(contact: Contact) -> int:
    """Primary id of the contact's group. A secondary without linked_id stands for itself."""
    if contact.is_primary or contact.linked_id is None:
        return contact.id
    return contact.linked_id


def group_roots(members: list[Contact]) -> list[Contact]:
    """Contacts heading a group among members, oldest first.

    Primaries, plus orphans: secondaries with no linked_id or whose linked
    contact is not among members (deleted or missing).
    """
    present = {c.id for c in members}
    roots = [
        c
        for c in members
        if c.is_primary or c.linked_id is None or c.linked_id not in present
    ]
    # Only reachable with a cycle of secondaries; oldest member takes over.
    return _oldest_first(roots or members)


def expand_groups(store: ContactStore, root_ids: Iterable[int]) -> list[Contact]:
    """Every non-deleted contact in the groups headed by root_ids, oldest first.

    Follows linked ids until no new ones appear, so a secondary pointing at
    another secondary still pulls in the whole chain.
    """
    refs = set(root_ids)
    while True:
        members = store.find_contacts(ContactFilter.group_of(refs))
        unseen = {c.linked_id for c in members if c.linked_id is not None} - refs
        if not unseen:
            return _oldest_first(members)
        refs |= unseen


def plan_merge(members: list[Contact]) -> tuple[Contact, set[int], set[int]]:
    """Return (true primary, ids to demote, ids to re-point at the true primary)."""
    roots = group_roots(members)
    true_primary = roots[0]
    demoted = {c.id for c in roots[1:]}
    relinked = {
        c.id
        for c in members
        if c.id != true_primary.id
        and c.id not in demoted
        and c.linked_id != true_primary.id
    }
    return true_primary, demoted, relinked


def consolidate(primary_id: int, group: list[Contact]) -> ConsolidatedContact:
    """Build the identify response for a group.

    The primary's own email/phone come first, then every other distinct value
    in creation order. Secondary ids are listed in creation order.
    """
    ordered = _oldest_first(group)
    primary = next(c for c in ordered if c.id == primary_id)
    return ConsolidatedContact(
        primary_contact_id=primary_id,
        emails=_distinct([primary.email, *(c.email for c in ordered)]),
        phone_numbers=_distinct(
            [primary.phone_number, *(c.phone_number for c in ordered)]
        ),
        secondary_contact_ids=[c.id for c in ordered if c.id != primary_id],
    )


class IdentityService:
    """Resolves contact touchpoints into consolidated identities. Stateless between calls."""

    def __init__(
        self,
        repository: ContactRepository,
        *,
        phone_normalizer: Callable[[str], str | None] | None = None,
    ) -> None:
        self._repo = repository
        self._phone_normalizer = phone_normalizer

    def identify(
        self,
        email: str | None = None,
        phone_number: str | int | None = None,
    ) -> ConsolidatedContact:
        """Return the consolidated identity for the given email and/or phone number.

        Creates a primary when nothing matches, merges groups the request
        links together, and appends a secondary when the request carries an
        email or phone the group has not seen. Raises ValidationError when
        both inputs are missing and PersistenceError when the store fails.
        """
        email = _clean(email)
        phone_number = self._clean_phone(phone_number)
        if email is None and phone_number is None:
            raise ValidationError("At least one of email or phoneNumber must be provided")

        while True:
            matches = self._repo.find_contacts(
                ContactFilter(email=email, phone_number=phone_number)
            )
            logger.debug("Matched %d stored contacts", len(matches))
            if not matches:
                contact = self._repo.create_contact(
                    NewContact(email=email, phone_number=phone_number)
                )
                logger.info("Created primary contact %s", contact.id)
                return consolidate(contact.id, [contact])

            members = expand_groups(self._repo, {group_root_id(c) for c in matches})
            primary_id, group = self._merge(members)
            result = self._enrich(primary_id, group, email, phone_number)
            if result is not None:
                return result
            logger.info("Primary %s was merged away mid-request; resolving again", primary_id)

    def _clean_phone(self, phone_number: str | int | None) -> str | None:
        phone_number = _clean(phone_number)
        if phone_number is None or self._phone_normalizer is None:
            return phone_number
        return self._phone_normalizer(phone_number) or phone_number

    def _merge(self, members: list[Contact]) -> tuple[int, list[Contact]]:
        """Collapse every group in members into the one headed by the oldest root."""
        true_primary, demoted, relinked = plan_merge(members)
        if true_primary.is_primary and not demoted and not relinked:
            return true_primary.id, members

        with self._repo.transaction() as uow:
            # Re-read under lock: a competing request may have merged already.
            locked: set[int] = set()
            root_ids = {c.id for c in group_roots(members)}
            while not root_ids <= locked:
                uow.lock_contacts(root_ids - locked)
                locked |= root_ids
                members = expand_groups(uow, locked | {c.id for c in members})
                root_ids = {c.id for c in group_roots(members)}

            true_primary, demoted, relinked = plan_merge(members)
            if not true_primary.is_primary:
                uow.update_contacts(
                    {true_primary.id},
                    ContactPatch(link_precedence=LinkPrecedence.PRIMARY),
                )
                logger.warning("Promoted orphaned contact %s to primary", true_primary.id)
            if demoted:
                uow.update_contacts(
                    demoted,
                    ContactPatch(
                        link_precedence=LinkPrecedence.SECONDARY,
                        linked_id=true_primary.id,
                    ),
                )
                relinked |= {
                    c.id for c in uow.find_contacts(ContactFilter(linked_ids=demoted))
                }
            if relinked:
                uow.update_contacts(relinked, ContactPatch(linked_id=true_primary.id))

        if demoted or relinked:
            logger.info(
                "Merged into primary %s: demoted %s, re-linked %s",
                true_primary.id,
                sorted(demoted),
                sorted(relinked),
            )
        return true_primary.id, self._group(true_primary.id)

    def _enrich(
        self,
        primary_id: int,
        group: list[Contact],
        email: str | None,
        phone_number: str | None,
    ) -> ConsolidatedContact | None:
        """Append a secondary when the request brings an unseen email or phone.

        The insert runs with the primary locked. Returns None when the primary
        was demoted or deleted before the lock was taken.
        """
        if not _brings_new_value(group, email, phone_number):
            return consolidate(primary_id, group)

        with self._repo.transaction() as uow:
            locked = uow.lock_contacts({primary_id})
            if not locked or not locked[0].is_primary:
                return None
            group = uow.find_contacts(ContactFilter.group_of({primary_id}))
            if _brings_new_value(group, email, phone_number):
                contact = uow.create_contact(
                    NewContact(
                        email=email,
                        phone_number=phone_number,
                        link_precedence=LinkPrecedence.SECONDARY,
                        linked_id=primary_id,
                    )
                )
                logger.info("Added secondary contact %s to primary %s", contact.id, primary_id)
                group = uow.find_contacts(ContactFilter.group_of({primary_id}))
        return consolidate(primary_id, group)

    def _group(self, primary_id: int) -> list[Contact]:
        return _oldest_first(self._repo.find_contacts(ContactFilter.group_of({primary_id})))
