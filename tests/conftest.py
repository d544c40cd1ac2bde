import pytest
from fastapi.testclient import TestClient

from rfp_cloud import models
from rfp_cloud.config import Settings
from rfp_cloud.main import create_app
from rfp_cloud.storage import JsonStore

from fakes import FakeLLM, FakeMailer, FakeObjectStorage

INBOUND_TOKEN = "test-inbound-token"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        inbound_token=INBOUND_TOKEN,
        data_dir=tmp_path / "data",
        spaces_bucket="bucket",
        spaces_region="nyc3",
        reply_domain="reply.test",
        mail_from="rfp@buyer.test",
    )


@pytest.fixture
def store(settings):
    return JsonStore(settings.data_dir)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def object_storage():
    return FakeObjectStorage()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(settings, store, llm, object_storage, mailer):
    app = create_app(settings, store=store, llm=llm, object_storage=object_storage, mailer=mailer)
    return TestClient(app)


@pytest.fixture
def buyer(store):
    return store.insert("users", models.User(email="buyer@buyer.test", username="buyer"))


@pytest.fixture
def rfp(store, buyer):
    return store.insert("rfps", models.RFP(
        title="Laptops for finance",
        description_raw="20 laptops, 16GB RAM",
        budget_usd=10000,
        delivery_days=10,
        reference_token="tok-123",
        created_by_id=buyer.id,
    ))


@pytest.fixture
def vendor(store):
    return store.insert("vendors", models.Vendor(name="Acme Co", contact_email="sales@acme.test"))


@pytest.fixture
def dispatch(store, rfp, vendor):
    return store.insert("sent_rfps", models.SentDispatch(
        rfp_id=rfp.id,
        vendor_id=vendor.id,
        reference_id=f"rfp-{rfp.id}-sent-aaaabbbbcccc",
        message_id="<rfp-1111@reply.test>",
        status=models.DispatchStatus.SENT,
    ))
