import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from dreamboat_api.config import Settings, get_settings
from dreamboat_api.database import Base, create_session_factory, get_db
from dreamboat_api.services import (
    CreditGate,
    CurationEngine,
    GenerationService,
    PhotoLifecycleManager,
)
from dreamboat_api.services.payments import StripeCheckout

from .fakes import (
    FakePurchaseVerifier,
    FakeQueue,
    FakeStorage,
    FakeValidationEngine,
    make_token,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        auth_jwt_key="test-secret",
        worker_token="worker-secret",
        validation_timeout_seconds=1.0,
        validation_retry_delay_seconds=0.0,
        validation_max_attempts=3,
        images_per_scenario=2,
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def strict_session_factory(tmp_path):
    """Sessions on a database that enforces foreign keys, as Postgres does."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'strict.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def validation_engine():
    return FakeValidationEngine()


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def verifier():
    return FakePurchaseVerifier()


@pytest.fixture
def photos(db, storage, validation_engine, settings):
    return PhotoLifecycleManager(db, storage, validation_engine, settings)


@pytest.fixture
def credits(db, verifier):
    return CreditGate(db, verifier)


@pytest.fixture
def curation(db, settings):
    return CurationEngine(db, settings.max_profile_photos)


@pytest.fixture
def generation(db, photos, credits, queue, curation, settings):
    return GenerationService(db, photos, credits, queue, curation, settings)


@pytest.fixture
async def client(session_factory, settings, storage, validation_engine, queue, verifier):
    from dreamboat_api.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.storage = storage
    app.state.queue = queue
    app.state.validation_engine = validation_engine
    app.state.purchase_verifier = verifier
    app.state.stripe_checkout = StripeCheckout(settings)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {make_token()}"},
    ) as c:
        yield c

    app.dependency_overrides.clear()
