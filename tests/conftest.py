"""
Shared fixtures for the store test suite

Provides settings, an in-memory database behind a real service container,
a recording SendGrid transport, catalog/purchase factories and signed Stripe
webhook payloads.
"""
import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from core.config import Settings
from core.services import build_services
from d1_catalog.models import CatalogItem
from d2_checkout.models import Purchase, PurchaseStatus
from database.base import Base

WEBHOOK_SECRET = "whsec_test_secret"


class MailOutbox:
    """httpx transport standing in for the SendGrid API"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 202
        self.error: Optional[Exception] = None
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.status_code >= 400:
            return httpx.Response(self.status_code, json={"errors": [{"message": "rejected"}]})
        return httpx.Response(self.status_code, headers={"X-Message-Id": f"msg_{len(self.requests)}"})

    @property
    def payloads(self) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    @property
    def sent(self) -> int:
        return len(self.requests)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header for a payload"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        testing=True,
        database_url="sqlite://",
        base_url="https://store.financetransformers.test",
        site_url="https://financetransformers.test",
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        sendgrid_api_key="SG.test-key",
        log_format="text",
    )


@pytest.fixture
def mail_outbox() -> MailOutbox:
    return MailOutbox()


@pytest.fixture
def services(settings, mail_outbox):
    services = build_services(settings, mail_transport=mail_outbox.transport)
    Base.metadata.create_all(services.engine)
    yield services
    Base.metadata.drop_all(services.engine)
    services.close()


@pytest.fixture
def db_session(services):
    session = services.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_pdf(db_session):
    """Factory for catalog items"""

    def _make_pdf(**overrides) -> CatalogItem:
        values = {
            "id": str(uuid.uuid4()),
            "title": "Market Outlook 2025",
            "description": "Quarterly macro outlook",
            "price": Decimal("9.99"),
            "currency": "EUR",
            "is_premium": True,
            "file_url": "https://cdn.financetransformers.test/pdfs/market-outlook-2025.pdf",
        }
        values.update(overrides)
        item = CatalogItem(**values)
        db_session.add(item)
        db_session.commit()
        return item

    return _make_pdf


@pytest.fixture
def make_purchase(db_session):
    """Factory for purchases of an existing catalog item"""

    def _make_purchase(pdf: CatalogItem, **overrides) -> Purchase:
        values = {
            "user_id": "user_123",
            "customer_email": "buyer@example.com",
            "pdf_id": pdf.id,
            "stripe_checkout_session_id": f"cs_test_{uuid.uuid4().hex[:12]}",
            "amount_paid": pdf.price,
            "currency": pdf.currency,
            "status": PurchaseStatus.PENDING,
        }
        values.update(overrides)
        purchase = Purchase(**values)
        db_session.add(purchase)
        db_session.commit()
        return purchase

    return _make_purchase


@pytest.fixture
def stripe_event():
    """Build a signed Stripe event delivery: returns (payload, signature header)"""

    def _stripe_event(
        event_type: str,
        obj: Dict[str, Any],
        event_id: Optional[str] = None,
        created: Optional[int] = None,
        secret: str = WEBHOOK_SECRET,
    ):
        event = {
            "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "created": created or int(time.time()),
            "livemode": False,
            "data": {"object": obj},
        }
        payload = json.dumps(event).encode("utf-8")
        return payload, sign_payload(payload, secret)

    return _stripe_event


@pytest.fixture
def client(settings, services):
    from main import create_app

    app = create_app(settings=settings, services=services)
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def sign_webhook():
    """Signs a raw payload the way Stripe does"""
    return sign_payload


@pytest.fixture
def webhook_secret() -> str:
    return WEBHOOK_SECRET
