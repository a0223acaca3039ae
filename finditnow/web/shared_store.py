"""
Shared Store and Services

Builds the document store and the services that share it.
Supports both in-memory (development) and PostgreSQL (production) modes.

Mode is determined by environment variables:
- FINDITNOW_STORE_DRIVER: Explicit driver selection (memory, psycopg2)
- DATABASE_URL or DATABASE_HOST: Database connection (auto-selects psycopg2)
- Neither set: Use in-memory (default for development)

BOOTSTRAP:
- FINDITNOW_ADMIN_EMAIL / FINDITNOW_ADMIN_PASSWORD create or promote the
  administrator account at startup
- Demo seeding is DISABLED by default; set FINDITNOW_ENABLE_DEMO_SEED=1
- Seeding only happens while the store holds no items
"""

import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from threading import Lock
from typing import Optional
from uuid import uuid4

import psycopg2

from ..core import (
    ChatService,
    ClaimWorkflow,
    FeedbackService,
    IdentityService,
    ItemCatalog,
    LlmClient,
    Mailer,
    MaintenanceService,
    MatchingConfig,
    MatchingService,
)
from ..core.identity import ACCOUNTS, hash_password
from ..db.config import DatabaseConfig, StoreDriver, get_database_url, get_store_driver
from ..db.store import DocumentStore, InMemoryDocumentStore, PostgresDocumentStore
from ..observability import get_logger, is_production
from ..schemas import Account, AccountRole, ClaimForm, ItemReport, ItemType


logger = get_logger("finditnow.store")

_seed_lock = Lock()


@dataclass
class Services:
    """Everything a request handler may need, sharing one store."""
    store: DocumentStore
    mailer: Mailer
    identity: IdentityService
    catalog: ItemCatalog
    workflow: ClaimWorkflow
    chat: ChatService
    feedback: FeedbackService
    maintenance: MaintenanceService
    matching: MatchingService


def create_store() -> DocumentStore:
    """
    Create the DocumentStore the environment asks for.

    In development an unreachable database falls back to the in-memory
    store; in production it is fatal.
    """
    driver = get_store_driver()

    if driver == StoreDriver.MEMORY:
        logger.info("Using in-memory store (no persistence)")
        return InMemoryDocumentStore()

    db_url = get_database_url()
    config = DatabaseConfig.from_url(db_url) if db_url else DatabaseConfig.from_env()

    try:
        return _create_psycopg2_store(config)
    except psycopg2.Error as e:
        if is_production():
            raise
        logger.error(
            "Could not connect to PostgreSQL, falling back to in-memory store",
            error=str(e),
            database=config.to_url(include_password=False),
        )
        return InMemoryDocumentStore()


def _create_psycopg2_store(config: DatabaseConfig) -> PostgresDocumentStore:
    def connection_factory():
        return psycopg2.connect(config.to_dsn())

    store = PostgresDocumentStore(
        connection_factory,
        lock_timeout_ms=config.lock_timeout_ms,
        statement_timeout_ms=config.statement_timeout_ms,
    )
    store.create_schema()
    logger.info(
        "PostgreSQL store ready",
        host=f"{config.host}:{config.port}/{config.database}",
    )
    return store


def build_services(
    store: Optional[DocumentStore] = None,
    mailer: Optional[Mailer] = None,
    matching_config: Optional[MatchingConfig] = None,
    llm_client: Optional[LlmClient] = None,
) -> Services:
    """Wire the services together. Tests pass in-memory stores and doubles."""
    store = store if store is not None else create_store()
    mailer = mailer or Mailer()
    catalog = ItemCatalog(store, mailer)

    return Services(
        store=store,
        mailer=mailer,
        identity=IdentityService(store, mailer),
        catalog=catalog,
        workflow=ClaimWorkflow(store, mailer),
        chat=ChatService(store),
        feedback=FeedbackService(store),
        maintenance=MaintenanceService(store),
        matching=MatchingService(catalog, config=matching_config, client=llm_client),
    )


def bootstrap(services: Services) -> None:
    """Startup tasks: ensure the admin account, optionally seed demo data."""
    admin_email = os.getenv("FINDITNOW_ADMIN_EMAIL", "")
    admin_password = os.getenv("FINDITNOW_ADMIN_PASSWORD", "")
    if admin_email and admin_password:
        services.identity.ensure_admin(admin_email, admin_password)
    elif admin_email:
        logger.warning("FINDITNOW_ADMIN_EMAIL set without FINDITNOW_ADMIN_PASSWORD; no admin created")

    if os.getenv("FINDITNOW_ENABLE_DEMO_SEED", "").lower() in ("1", "true", "yes"):
        seed_demo_data(services)
    else:
        logger.debug("Demo seeding disabled (set FINDITNOW_ENABLE_DEMO_SEED=1 to enable)")


def _ensure_account(
    services: Services,
    email: str,
    password: str,
    role: AccountRole = AccountRole.USER,
    business_name: Optional[str] = None,
) -> Account:
    """Create a demo account directly, skipping the email code."""
    existing = services.identity.get_by_email(email)
    if existing:
        return existing

    account = Account(
        id=str(uuid4()),
        email=email,
        password_hash=hash_password(password),
        role=role,
        created_at=datetime.now(timezone.utc),
        business_name=business_name,
        business_type="Airport" if role == AccountRole.PARTNER else None,
    )
    with services.store.begin_batch() as ctx:
        stored = ctx.insert(ACCOUNTS, account.model_dump(mode="json"))
        ctx.commit()
    return Account.model_validate(stored)


def seed_demo_data(services: Services) -> dict[str, int]:
    """
    Seed a handful of demo accounts, items and one accepted claim.

    SAFETY RULES:
    - Only seeds if the store holds no items
    - Serialized per process
    """
    with _seed_lock:
        if services.store.count("items") > 0:
            logger.info("Store already has items - skipping seed")
            return {"items": 0, "claims": 0}

        logger.info("Seeding demo data...")
        finder = _ensure_account(services, "finder@example.com", "finder123")
        owner = _ensure_account(services, "owner@example.com", "owner123")
        airport = _ensure_account(
            services,
            "desk@airport.example.com",
            "partner123",
            role=AccountRole.PARTNER,
            business_name="Metro Airport Lost & Found",
        )

        today = date.today()
        reports = [
            (finder, ItemReport(
                type=ItemType.FOUND,
                name="Brown Wallet",
                category="wallets",
                description="Brown leather wallet with a few cards and a library card inside.",
                distinguishing_marks="Initials J.D. stamped on the inside flap",
                location="Central Park",
                date=today - timedelta(days=2),
                contact=finder.email,
            )),
            (airport, ItemReport(
                type=ItemType.FOUND,
                name="Black Backpack",
                category="bags",
                description="Black laptop backpack left at gate B12, contains a charger.",
                location="Metro Airport Terminal 2",
                date=today - timedelta(days=1),
                contact=airport.email,
            )),
            (owner, ItemReport(
                type=ItemType.LOST,
                name="Silver Keys",
                category="keys",
                description="Three silver keys on a red carabiner with a bottle opener.",
                location="Riverside Cafe",
                date=today - timedelta(days=3),
                contact=owner.email,
            )),
        ]
        items = [services.catalog.report_item(account, report) for account, report in reports]

        claim = services.workflow.submit_claim(
            items[0].id,
            owner,
            ClaimForm(
                full_name="Jordan Doe",
                email=owner.email,
                proof="It has my initials J.D. stamped inside and my library card.",
            ),
        )
        services.workflow.accept_claim(claim.id, finder)

        logger.info("Seeded demo data", items=len(items), claims=1)
        return {"items": len(items), "claims": 1}
