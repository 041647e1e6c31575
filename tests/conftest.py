import anyio
import pytest

from macommune.core.config import Settings
from macommune.db.repository import DemandeRepository
from macommune.db.session import Database
from macommune.main import build_lifecycle
from macommune.services.renderer import HtmlRenderer
from tests.fixtures.rasterizers import FakeRasterizer
from tests.fixtures.seed import seed_database
from tests.fixtures.settings import make_settings


@pytest.fixture
def anyio_backend():
    return "asyncio"


# ---------------------------------------------------------------------------
# Configuration and store
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def seeded_settings(settings) -> Settings:
    """Seeded store for synchronous tests (HTTP client)."""
    anyio.run(seed_database, settings.database_url)
    return settings


@pytest.fixture
async def database(settings):
    await seed_database(settings.database_url)
    db = Database(settings.database_url)
    yield db
    await db.close()


@pytest.fixture
def repository(database) -> DemandeRepository:
    return DemandeRepository(database)


@pytest.fixture
def renderer(settings) -> HtmlRenderer:
    return HtmlRenderer(settings)


@pytest.fixture
def rasterizer() -> FakeRasterizer:
    return FakeRasterizer()


@pytest.fixture
def lifecycle(settings, database, rasterizer):
    return build_lifecycle(settings, database, rasterizer)
