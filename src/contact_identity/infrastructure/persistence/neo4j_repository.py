"""Neo4j implementation of ContactRepository.

Graph: one (:Contact) node per contact record. Links are kept as the
linked_id property rather than relationships, so a merge is a pair of bulk
property updates. Integer ids come from a (:ContactSequence) counter node that
is incremented under its write lock.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from neo4j.exceptions import DriverError, Neo4jError

from contact_identity.application.dto import ContactFilter, ContactPatch, NewContact
from contact_identity.application.errors import PersistenceError
from contact_identity.domain import Contact, utcnow

CONTACT_SEQUENCE = "contact"

_SCHEMA_QUERIES = (
    "CREATE CONSTRAINT contact_id_unique IF NOT EXISTS "
    "FOR (c:Contact) REQUIRE c.id IS UNIQUE",
    "CREATE CONSTRAINT contact_sequence_unique IF NOT EXISTS "
    "FOR (s:ContactSequence) REQUIRE s.name IS UNIQUE",
    "CREATE INDEX contact_email IF NOT EXISTS FOR (c:Contact) ON (c.email)",
    "CREATE INDEX contact_phone_number IF NOT EXISTS FOR (c:Contact) ON (c.phone_number)",
    "CREATE INDEX contact_linked_id IF NOT EXISTS FOR (c:Contact) ON (c.linked_id)",
)

_FIND_QUERY = """
MATCH (c:Contact)
WHERE c.deleted_at IS NULL
  AND (($email IS NOT NULL AND c.email = $email)
    OR ($phone_number IS NOT NULL AND c.phone_number = $phone_number)
    OR c.id IN $ids
    OR c.linked_id IN $linked_ids)
RETURN c
ORDER BY c.created_at, c.id
"""

# The sequence node is locked before it is read. created_at never goes below
# the last one issued, so (created_at, id) order follows id order.
_CREATE_QUERY = """
MERGE (seq:ContactSequence {name: $sequence})
ON CREATE SET seq.value = 0
SET seq._lock = true
REMOVE seq._lock
WITH seq
SET seq.value = seq.value + 1,
    seq.issued_at = CASE
        WHEN seq.issued_at IS NULL OR seq.issued_at < $now THEN $now
        ELSE seq.issued_at
    END
WITH seq.value AS id, seq.issued_at AS issued_at
CREATE (c:Contact {
    id: id,
    email: $email,
    phone_number: $phone_number,
    link_precedence: $link_precedence,
    linked_id: $linked_id,
    created_at: issued_at,
    updated_at: issued_at
})
RETURN c
"""

_UPDATE_QUERY = """
MATCH (c:Contact)
WHERE c.id IN $ids
SET c.link_precedence = coalesce($link_precedence, c.link_precedence),
    c.linked_id = CASE
        WHEN $link_precedence = 'primary' THEN null
        ELSE coalesce($linked_id, c.linked_id)
    END,
    c.updated_at = $updated_at
RETURN count(c) AS updated
"""

# Setting and removing a property takes the node write lock without changing it.
_LOCK_QUERY = """
MATCH (c:Contact)
WHERE c.id IN $ids AND c.deleted_at IS NULL
SET c._lock = true
REMOVE c._lock
RETURN c
ORDER BY c.id
"""


def _datetime_to_iso(dt: datetime) -> str:
    return dt.isoformat(timespec="microseconds")


def _iso_to_datetime(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


@contextmanager
def _persistence_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (Neo4jError, DriverError) as e:
        raise PersistenceError(f"Could not {action}: {e}") from e


def ensure_contact_schema(driver, database: str | None = None) -> None:
    """Create Contact constraints and lookup indexes if missing."""
    with _persistence_errors("create contact schema"):
        with driver.session(database=database) as session:
            for query in _SCHEMA_QUERIES:
                session.run(query).consume()


class _ContactQueries:
    """Store operations over anything with a Cypher run(): a session or a transaction."""

    def __init__(self, runner, clock: Callable[[], datetime] = utcnow) -> None:
        self._runner = runner
        self._clock = clock

    def find_contacts(self, criteria: ContactFilter) -> list[Contact]:
        if criteria.is_empty():
            return []
        with _persistence_errors("find contacts"):
            result = self._runner.run(
                _FIND_QUERY,
                email=criteria.email,
                phone_number=criteria.phone_number,
                ids=sorted(criteria.ids),
                linked_ids=sorted(criteria.linked_ids),
            )
            return [_record_to_contact(rec) for rec in result]

    def create_contact(self, fields: NewContact) -> Contact:
        with _persistence_errors("create contact"):
            result = self._runner.run(
                _CREATE_QUERY,
                sequence=CONTACT_SEQUENCE,
                email=fields.email,
                phone_number=fields.phone_number,
                link_precedence=fields.link_precedence.value,
                linked_id=fields.linked_id,
                now=_datetime_to_iso(self._clock()),
            )
            record = result.single()
        if record is None:
            raise PersistenceError("Could not create contact: no row returned")
        return _record_to_contact(record)

    def update_contacts(self, ids: set[int], patch: ContactPatch) -> int:
        if not ids:
            return 0
        with _persistence_errors("update contacts"):
            result = self._runner.run(
                _UPDATE_QUERY,
                ids=sorted(ids),
                link_precedence=(
                    patch.link_precedence.value if patch.link_precedence else None
                ),
                linked_id=patch.linked_id,
                updated_at=_datetime_to_iso(patch.updated_at),
            )
            record = result.single()
        return record["updated"] if record else 0


class Neo4jContactUnitOfWork(_ContactQueries):
    """Store operations inside one explicit Neo4j transaction."""

    def lock_contacts(self, ids: set[int]) -> list[Contact]:
        if not ids:
            return []
        with _persistence_errors("lock contacts"):
            result = self._runner.run(_LOCK_QUERY, ids=sorted(ids))
            return [_record_to_contact(rec) for rec in result]


class Neo4jContactRepository:
    """Stores contacts in Neo4j. Plain calls run as auto-commit queries."""

    def __init__(
        self,
        driver: object,
        database: str | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._driver = driver
        self._database = database
        self._clock = clock

    def find_contacts(self, criteria: ContactFilter) -> list[Contact]:
        with self._session() as session:
            return _ContactQueries(session, self._clock).find_contacts(criteria)

    def create_contact(self, fields: NewContact) -> Contact:
        with self._session() as session:
            return _ContactQueries(session, self._clock).create_contact(fields)

    def update_contacts(self, ids: set[int], patch: ContactPatch) -> int:
        with self._session() as session:
            return _ContactQueries(session, self._clock).update_contacts(ids, patch)

    @contextmanager
    def transaction(self) -> Iterator[Neo4jContactUnitOfWork]:
        """Open a write transaction; commit on normal exit, roll back on error."""
        with self._session() as session:
            with _persistence_errors("open transaction"):
                tx = session.begin_transaction()
            try:
                yield Neo4jContactUnitOfWork(tx, self._clock)
                with _persistence_errors("commit transaction"):
                    tx.commit()
            finally:
                if not tx.closed():
                    with _persistence_errors("roll back transaction"):
                        tx.rollback()

    @contextmanager
    def _session(self):
        with _persistence_errors("open session"):
            session = self._driver.session(database=self._database)
        try:
            yield session
        finally:
            session.close()


def _record_to_contact(record) -> Contact:
    c = record["c"]
    deleted_at = c.get("deleted_at")
    return Contact(
        id=c["id"],
        email=c.get("email") or None,
        phone_number=c.get("phone_number") or None,
        link_precedence=c["link_precedence"],
        linked_id=c.get("linked_id"),
        created_at=_iso_to_datetime(c["created_at"]),
        updated_at=_iso_to_datetime(c.get("updated_at") or c["created_at"]),
        deleted_at=_iso_to_datetime(deleted_at) if deleted_at else None,
    )
