"""
FastAPI backend: identity reconciliation over HTTP.
Run with uvicorn: uvicorn api.main:app --reload
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from repo root (when run from repo root or from Docker)
for path in (
    Path(__file__).resolve().parent.parent.parent / ".env",
    Path.cwd() / ".env",
):
    if path.exists():
        load_dotenv(path)
        break

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from neo4j import GraphDatabase
from pydantic import BaseModel

from contact_identity.application import (
    ConsolidatedContact,
    ContactRepository,
    IdentityService,
    PersistenceError,
    ValidationError,
)
from contact_identity.infrastructure import (
    InMemoryContactRepository,
    Neo4jContactRepository,
    e164_normalizer,
    ensure_contact_schema,
)

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
)
logger = logging.getLogger(__name__)

STORE_NEO4J = "neo4j"
STORE_MEMORY = "memory"


def _get_driver():
    uri = os.environ.get("NEO4J_URI", "bolt://localhost:7687").strip()
    user = os.environ.get("NEO4J_USER", "neo4j").strip()
    password = os.environ.get("NEO4J_PASSWORD", "password").strip()
    return GraphDatabase.driver(uri, auth=(user, password))


def _store_kind() -> str:
    kind = os.environ.get("CONTACT_STORE", STORE_NEO4J).strip().lower() or STORE_NEO4J
    if kind not in (STORE_NEO4J, STORE_MEMORY):
        raise RuntimeError(f"CONTACT_STORE must be '{STORE_NEO4J}' or '{STORE_MEMORY}', got {kind!r}")
    return kind


def _database() -> str | None:
    return os.environ.get("NEO4J_DATABASE", "").strip() or None


def _phone_normalizer():
    """E.164 normalizer when PHONE_NORMALIZATION=e164, else None (verbatim matching)."""
    mode = os.environ.get("PHONE_NORMALIZATION", "").strip().lower()
    if not mode:
        return None
    if mode != "e164":
        raise RuntimeError(f"PHONE_NORMALIZATION must be 'e164' or unset, got {mode!r}")
    return e164_normalizer(os.environ.get("PHONE_DEFAULT_REGION"))


def _build_repository(kind: str, driver) -> ContactRepository:
    if kind == STORE_MEMORY:
        return InMemoryContactRepository()
    return Neo4jContactRepository(driver, database=_database())


def get_service(request: Request) -> IdentityService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise RuntimeError("Identity service not initialized; app lifespan has not run")
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.driver = None
    app.state.service = None
    kind = _store_kind()
    phone_normalizer = _phone_normalizer()
    logger.info("Contact store: %s", kind)
    try:
        if kind == STORE_NEO4J:
            app.state.driver = _get_driver()
            ensure_contact_schema(app.state.driver, database=_database())
        app.state.service = IdentityService(
            _build_repository(kind, app.state.driver),
            phone_normalizer=phone_normalizer,
        )
        yield
    finally:
        app.state.service = None
        if app.state.driver is not None:
            app.state.driver.close()


app = FastAPI(title="Contact Identity API", lifespan=lifespan)


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Store failure on %s: %s", request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# --- REST: health ---


@app.get("/health")
def health():
    return {"status": "ok"}


# --- REST: identify ---


class IdentifyBody(BaseModel):
    email: str | None = None
    phoneNumber: str | int | None = None


class ContactPayload(BaseModel):
    primaryContactId: int
    emails: list[str]
    phoneNumbers: list[str]
    secondaryContactIds: list[int]


class IdentifyResponse(BaseModel):
    contact: ContactPayload


def _to_payload(result: ConsolidatedContact) -> IdentifyResponse:
    return IdentifyResponse(
        contact=ContactPayload(
            primaryContactId=result.primary_contact_id,
            emails=result.emails,
            phoneNumbers=result.phone_numbers,
            secondaryContactIds=result.secondary_contact_ids,
        )
    )


@app.post("/identify", response_model=IdentifyResponse)
def identify(body: IdentifyBody, service: IdentityService = Depends(get_service)):
    phone_number = str(body.phoneNumber) if body.phoneNumber is not None else None
    try:
        result = service.identify(email=body.email, phone_number=phone_number)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _to_payload(result)
