"""Shared fixtures and fakes for the contract tests."""

import base64
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from dealer_contracts.contracts.exceptions import UpstreamFailure
from dealer_contracts.contracts.models import DeliveryChannel, DeliveryStatus
from dealer_contracts.digitization.engines import ExtractionEngine
from dealer_contracts.integrations.document_store import LocalDocumentStore
from dealer_contracts.integrations.identity import Actor, ActorRole, ApiKeyDirectory
from dealer_contracts.notifications.channels import NotificationChannel
from dealer_contracts.notifications.notifier import Notifier
from dealer_contracts.service import ContractServices

SIGNATURE_PNG = base64.b64encode(b"\x89PNG\r\n\x1a\n" + b"signature-strokes").decode()
ORIGINAL_PDF = b"%PDF-1.4\n% test purchase agreement\n"

BUYER_AND_DEALER_FIELDS = [
    {"id": "buyer_sig", "type": "signature", "x": 0.1, "y": 0.8, "width": 0.3, "height": 0.05, "signer": "buyer"},
    {"id": "buyer_date", "type": "date", "x": 0.1, "y": 0.86, "width": 0.2, "height": 0.03, "signer": "buyer"},
    {"id": "dealer_sig", "type": "signature", "x": 0.6, "y": 0.8, "width": 0.3, "height": 0.05, "signer": "dealer"},
]


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FlakyDocumentStore(LocalDocumentStore):
    """Local store whose writes can be made to fail."""

    def __init__(self, root: Path):
        super().__init__(root)
        self.fail_puts = False
        self.puts = []

    def put(self, data: bytes, content_type: str, path: str) -> str:
        if self.fail_puts:
            raise UpstreamFailure("document store unavailable", service="document_store")
        self.puts.append(path)
        return super().put(data, content_type, path)


class RecordingChannel(NotificationChannel):
    """Channel that remembers what it was asked to send."""

    def __init__(self, name: str = "email", fail: bool = False):
        self.name = name
        self.fail = fail
        self.sent = []

    def get_name(self) -> str:
        return self.name

    def send(self, recipient, message):
        if self.fail:
            raise UpstreamFailure(f"{self.name} provider down", service=self.name)
        self.sent.append((recipient, message))
        return DeliveryStatus.SENT


class StaticExtractionEngine(ExtractionEngine):
    """Engine returning a fixed layout (or failing, or deferring to a callback)."""

    name = "static"

    def __init__(self, fields=None, error: str = None, deferred: bool = False):
        self.fields = fields if fields is not None else BUYER_AND_DEALER_FIELDS
        self.error = error
        self.deferred = deferred
        self.calls = []

    def extract(self, template_url, tenant_id, contract_id):
        self.calls.append((template_url, tenant_id, contract_id))
        if self.error:
            raise UpstreamFailure(self.error, service="extraction")
        if self.deferred:
            return None
        return list(self.fields)


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(temp_data_dir):
    return FlakyDocumentStore(temp_data_dir / "documents")


@pytest.fixture
def email_channel():
    return RecordingChannel("email")


@pytest.fixture
def sms_channel():
    return RecordingChannel("sms")


@pytest.fixture
def engine():
    return StaticExtractionEngine()


@pytest.fixture
def identity():
    return ApiKeyDirectory({
        "dealer-key": Actor(tenant_id="t1", role=ActorRole.DEALER, user_id="dana"),
        "viewer-key": Actor(tenant_id="t1", role=ActorRole.VIEWER, user_id="vic"),
        "service-key": Actor(tenant_id="t1", role=ActorRole.SERVICE, user_id="ocr"),
        "other-key": Actor(tenant_id="t2", role=ActorRole.DEALER, user_id="olga"),
    })


@pytest.fixture
def services(temp_data_dir, store, email_channel, sms_channel, engine, identity, clock):
    """All components against a temp database and fake collaborators."""
    notifier = Notifier({
        DeliveryChannel.EMAIL: email_channel,
        DeliveryChannel.SMS: sms_channel,
    })
    services = ContractServices.build(
        db_path=temp_data_dir / "contracts.db",
        store=store,
        identity=identity,
        notifier=notifier,
        engine=engine,
        base_url="https://sign.example.com",
        clock=clock,
    )
    yield services
    services.shutdown()


@pytest.fixture
def repository(services):
    return services.repository


@pytest.fixture
def signing(services):
    return services.signing


@pytest.fixture
def make_contract(services, store):
    """Factory for contracts with an uploaded original and optional fields."""

    def factory(tenant_id="t1", fields=BUYER_AND_DEALER_FIELDS, **data):
        original_url = store.put(ORIGINAL_PDF, "application/pdf", f"templates/{tenant_id}/purchase.pdf")
        payload = {
            "name": "Purchase Agreement - 2021 Civic",
            "type": "purchase",
            "original_document_url": original_url,
            "created_by": "dana",
            "sale_id": "sale-1",
        }
        payload.update(data)
        contract = services.repository.create(tenant_id, payload)
        if fields:
            contract = services.digitization.define_fields(tenant_id, contract.id, fields)
        return contract

    return factory
