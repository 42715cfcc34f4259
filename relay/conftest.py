# relay/conftest.py
import pytest
from fastapi.testclient import TestClient

from relay.core.config import Settings
from relay.core.metrics import METRICS
from relay.features.billing.ledger import PurchaseLedger
from relay.features.billing.resolver import ProductPlanResolver
from relay.tests.mocks import FakeCheckoutProvider, TEST_WEBHOOK_SECRET


@pytest.fixture
def test_settings():
    """Fully configured settings, isolated from the developer's .env."""
    return Settings(
        _env_file=None,
        ENV="test",
        POLAR_ACCESS_TOKEN="polar_oat_test",
        POLAR_WEBHOOK_SECRET=TEST_WEBHOOK_SECRET,
        POLAR_PRO_PRODUCT_ID="prod_pro",
        POLAR_MASTER_PRODUCT_ID="prod_master",
        POLAR_SERVER="sandbox",
        FRONTEND_URL="http://localhost:5173",
        POC_CUSTOMER_ID="poc_user_001",
    )


@pytest.fixture
def resolver(test_settings):
    r = ProductPlanResolver()
    r.initialize(test_settings)
    return r


@pytest.fixture
def ledger(resolver):
    return PurchaseLedger(resolver)


@pytest.fixture
def fake_provider():
    return FakeCheckoutProvider()


@pytest.fixture
def app(test_settings, fake_provider):
    from relay.main import create_app

    return create_app(test_settings, provider_factory=lambda: fake_provider)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Each test starts from zeroed counters."""
    METRICS.reset()
    yield
