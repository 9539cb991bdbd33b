"""Shared test fixtures for the asset marketplace test suite.

Each store gets its own in-memory SQLite database with StaticPool, so all
sessions of one store share a connection (committed data is visible across
sessions) while the two stores stay fully separate.
"""

import uuid

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from assetmarket.database import MarketplaceBase, RegistryBase
from assetmarket.main import app
from assetmarket.models import *  # noqa: ensure all models are loaded for create_all
from assetmarket.services.store_gateway import (
    AssetRegistryGateway,
    MarketplaceGateway,
    configure_gateways,
    get_marketplace,
    get_registry,
)


# ---------------------------------------------------------------------------
# In-memory SQLite test engines, one per store (shared via StaticPool)
# ---------------------------------------------------------------------------

def _memory_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


registry_engine = _memory_engine()
marketplace_engine = _memory_engine()
RegistrySession = async_sessionmaker(registry_engine, class_=AsyncSession, expire_on_commit=False)
MarketplaceSession = async_sessionmaker(marketplace_engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Auto-use: create/drop tables and fresh gateways for every test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
async def _setup_db(tmp_path):
    """Create all tables before each test, drop after. Also reset global state."""
    from assetmarket.services.storage_service import set_storage
    from assetmarket.storage.hashfs import HashFS

    set_storage(HashFS(str(tmp_path / "content_store")))
    configure_gateways(
        AssetRegistryGateway(RegistrySession, call_timeout=2.0),
        MarketplaceGateway(MarketplaceSession, call_timeout=2.0),
    )

    async with registry_engine.begin() as conn:
        await conn.run_sync(RegistryBase.metadata.create_all)
    async with marketplace_engine.begin() as conn:
        await conn.run_sync(MarketplaceBase.metadata.create_all)
    yield
    async with registry_engine.begin() as conn:
        await conn.run_sync(RegistryBase.metadata.drop_all)
    async with marketplace_engine.begin() as conn:
        await conn.run_sync(MarketplaceBase.metadata.drop_all)

    configure_gateways(None, None)
    set_storage(None)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def registry_db():
    """Yield a fresh AsyncSession on the asset registry for direct store tests."""
    async with RegistrySession() as session:
        yield session


@pytest.fixture
async def marketplace_db():
    """Yield a fresh AsyncSession on the marketplace for direct store tests."""
    async with MarketplaceSession() as session:
        yield session


@pytest.fixture
def registry() -> AssetRegistryGateway:
    return get_registry()


@pytest.fixture
def marketplace() -> MarketplaceGateway:
    return get_marketplace()


@pytest.fixture
def orchestrator(registry, marketplace):
    """Orchestrator over the test gateways with no retry backoff."""
    from assetmarket.services.orchestrator_service import ConsistencyOrchestrator

    return ConsistencyOrchestrator(registry, marketplace, max_attempts=3, backoff_seconds=0)


@pytest.fixture
async def client(orchestrator):
    """httpx AsyncClient wired to the FastAPI app with the test gateways."""
    import httpx

    from assetmarket.services.orchestrator_service import get_orchestrator

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------

def _new_principal(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def principal():
    """Return a callable that mints a unique principal name."""
    return _new_principal


@pytest.fixture
def auth_header():
    """Return a callable that builds an Authorization header from a JWT."""
    def _build(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}
    return _build


@pytest.fixture
def make_token():
    """Factory fixture: mint a JWT for a principal (a fresh one if none given)."""
    from assetmarket.core.auth import create_access_token

    def _make(principal: str | None = None) -> tuple[str, str]:
        principal = principal or _new_principal()
        return principal, create_access_token(principal)

    return _make


@pytest.fixture
def make_asset(registry):
    """Factory fixture: register an asset for ``owner`` through the registry gateway."""
    from assetmarket.schemas.asset import AssetUploadRequest

    async def _make(
        owner: str | None = None,
        name: str = "Low-poly fox",
        category: str = "models",
        price: int = 500,
        tags: list[str] | None = None,
    ):
        req = AssetUploadRequest(
            name=name,
            description=f"{name} for testing",
            category=category,
            tags=tags or ["fox", "lowpoly"],
            price=price,
            content_type="glb",
            content_hash="sha256:" + uuid.uuid4().hex * 2,
            content_size=2048,
        )
        return await registry.upload_asset(owner or _new_principal("owner"), req)

    return _make


@pytest.fixture
def make_listing(orchestrator, make_asset):
    """Factory fixture: list an asset for sale (creating the asset unless one is given).

    Returns ``(asset_id, listing)``.
    """
    from assetmarket.schemas.listing import ListingCreateRequest

    async def _make(seller: str | None = None, asset=None, price: int = 750, category: str = "models"):
        if asset is None:
            asset = await make_asset(owner=seller, category=category)
        req = ListingCreateRequest(
            asset_id=asset.id,
            price=price,
            title=f"{asset.name} listing",
            description="Ready to drop into a scene",
            category=category,
            tags=["fox"],
        )
        listing = await orchestrator.list_for_sale(asset.owner, req)
        return asset.id, listing

    return _make
