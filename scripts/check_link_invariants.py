#!/usr/bin/env python3
"""Report stored contacts that break the identity-group link rules.

Checks non-deleted (:Contact) nodes for: secondaries without linked_id,
secondaries linked to a missing/deleted contact, secondaries linked to another
secondary, and primaries that still carry a linked_id. Read-only. Run from
repo root with .env (NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD). Exit code 1 when
anything is found, 2 when the check itself fails. The next identify call
touching a reported group repairs it.
"""
import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent

from dotenv import load_dotenv  # noqa: E402
from neo4j import GraphDatabase  # noqa: E402
from neo4j.exceptions import DriverError, Neo4jError  # noqa: E402

load_dotenv(REPO_ROOT / ".env")

_CHECKS = {
    "secondary without linked_id": """
        MATCH (c:Contact)
        WHERE c.deleted_at IS NULL AND c.link_precedence = 'secondary'
          AND c.linked_id IS NULL
        RETURN c.id AS id, null AS linked_id
        ORDER BY id
    """,
    "secondary linked to missing or deleted contact": """
        MATCH (c:Contact)
        WHERE c.deleted_at IS NULL AND c.link_precedence = 'secondary'
          AND c.linked_id IS NOT NULL
          AND NOT EXISTS {
              MATCH (p:Contact {id: c.linked_id}) WHERE p.deleted_at IS NULL
          }
        RETURN c.id AS id, c.linked_id AS linked_id
        ORDER BY id
    """,
    "secondary linked to another secondary": """
        MATCH (c:Contact), (p:Contact {id: c.linked_id})
        WHERE c.deleted_at IS NULL AND p.deleted_at IS NULL
          AND c.link_precedence = 'secondary' AND p.link_precedence = 'secondary'
        RETURN c.id AS id, c.linked_id AS linked_id
        ORDER BY id
    """,
    "primary with linked_id": """
        MATCH (c:Contact)
        WHERE c.deleted_at IS NULL AND c.link_precedence = 'primary'
          AND c.linked_id IS NOT NULL
        RETURN c.id AS id, c.linked_id AS linked_id
        ORDER BY id
    """,
}


def main() -> int:
    uri = os.environ.get("NEO4J_URI", "bolt://localhost:7687").strip()
    user = os.environ.get("NEO4J_USER", "neo4j").strip()
    password = os.environ.get("NEO4J_PASSWORD", "password").strip()
    database = os.environ.get("NEO4J_DATABASE", "").strip() or None
    driver = GraphDatabase.driver(uri, auth=(user, password))
    found = 0
    try:
        with driver.session(database=database) as session:
            for label, query in _CHECKS.items():
                rows = [(r["id"], r["linked_id"]) for r in session.run(query)]
                if not rows:
                    continue
                found += len(rows)
                print(f"{label}: {len(rows)}")
                for contact_id, linked_id in rows:
                    print(f"  contact {contact_id} -> {linked_id}")
    except (Neo4jError, DriverError) as e:
        print(f"Check failed: {e}", file=sys.stderr)
        return 2
    finally:
        driver.close()

    if not found:
        print("All contact links are consistent.")
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
