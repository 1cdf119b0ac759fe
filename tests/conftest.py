"""Shared fixtures: an isolated SQLite database, fake gateways and collaborators."""

import json
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Tuple

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from fee_settlement.config.integrations import GatewayConfig
from fee_settlement.db.init_db import drop_db, init_db
from fee_settlement.db.session import build_engine
from fee_settlement.repositories.fee.fee_obligation_repository import FeeObligationRepository
from fee_settlement.repositories.payment.payment_intent_repository import PaymentIntentRepository
from fee_settlement.schemas.common.enums import (
    GatewayKind,
    PaymentStatus,
    ReconciliationStatus,
)
from fee_settlement.services.gateway.adapter_registry import AdapterRegistry
from fee_settlement.services.gateway.credential_provider import CredentialProvider, InMemoryTokenCache
from fee_settlement.services.payment.settlement_orchestrator import SettlementOrchestrator

GATEWAY_BASE_URL = "https://gateway.test"
CALLBACK_BASE_URL = "https://fees.school.test/api/v1/payments"
STUDENT_ID = "stu-0001"
OTHER_STUDENT_ID = "stu-0002"


class FakeGateway:
    """
    httpx.MockTransport handler serving canned gateway responses.

    Each route holds a queue of ``(status, body)`` pairs or exceptions; the
    last entry keeps being served once the queue is down to one.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, *responses) -> None:
        self.routes[(method, path)] = list(responses)

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def json_sent_to(self, path: str) -> Dict[str, Any]:
        return json.loads(self.requests_to(path)[-1].content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "no such route"})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        status_code, body = response
        return httpx.Response(status_code, json=body)


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify_payment_status(self, user_id, payment_id, amount, status, description=None, action_url=None):
        self.calls.append({"user_id": user_id, "payment_id": payment_id, "amount": amount, "status": status})


class RecordingEnrollment:
    def __init__(self):
        self.calls = []

    def create_enrollment(self, student_id, course_id, payment_id):
        self.calls.append((student_id, course_id, payment_id))


# ==================== Database ====================


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'settlement.db'}")
    init_db(bind=engine)
    yield engine
    drop_db(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_obligation(db):
    repo = FeeObligationRepository(db)

    def _make(student_id=STUDENT_ID, total_owed="500.00", due_date=date(2026, 1, 10), description="Tuition"):
        return repo.create_obligation(
            student_id=student_id,
            total_owed=Decimal(total_owed),
            due_date=due_date,
            description=description,
        )

    return _make


@pytest.fixture
def obligations(make_obligation):
    """Two obligations for one student: 500 due in January, 300 due in February."""
    first = make_obligation(total_owed="500.00", due_date=date(2026, 1, 10), description="Term 1 tuition")
    second = make_obligation(total_owed="300.00", due_date=date(2026, 2, 10), description="Term 1 boarding")
    return first, second


@pytest.fixture
def completed_intent(db):
    """Factory for completed payments awaiting allocation."""
    repo = PaymentIntentRepository(db)
    counter = {"n": 0}

    def _make(amount, student_id=STUDENT_ID, fee_id=None, gateway_kind=GatewayKind.MANUAL):
        counter["n"] += 1
        intent = repo.create_intent(
            gateway_kind=gateway_kind,
            order_reference=f"TEST-{student_id}-{counter['n']}",
            student_id=student_id,
            amount=Decimal(amount),
            currency="KES",
            fee_id=fee_id,
            status=PaymentStatus.COMPLETED,
            reconciliation_status=ReconciliationStatus.PENDING,
        )
        return intent

    return _make


# ==================== Gateways ====================


@pytest.fixture
def fake_gateway():
    gateway = FakeGateway()
    gateway.add("GET", "/oauth/v1/generate", (200, {"access_token": "daraja-token", "expires_in": "3599"}))
    gateway.add(
        "POST",
        "/authentication/api/v3/authenticate/merchant",
        (200, {"accessToken": "jenga-token", "expiresIn": "3600"}),
    )
    gateway.add(
        "POST",
        "/mpesa/stkpush/v1/processrequest",
        (
            200,
            {
                "MerchantRequestID": "29115-34620561-1",
                "CheckoutRequestID": "ws_CO_191020261430151234",
                "ResponseCode": "0",
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing",
            },
        ),
    )
    gateway.add(
        "POST",
        "/v3-apis/payment-api/v3.0/stkussdpush/initiate",
        (200, {"status": True, "code": 0, "message": "Request accepted", "transactionRef": "EQP-TX-0001"}),
    )
    return gateway


@pytest.fixture
def http_client(fake_gateway):
    client = httpx.Client(transport=httpx.MockTransport(fake_gateway))
    yield client
    client.close()


@pytest.fixture
def gateway_configs():
    common = dict(
        enabled=True,
        base_url=GATEWAY_BASE_URL,
        sandbox=True,
        timeout_seconds=5.0,
        currency="KES",
        country_code="KE",
    )
    return {
        GatewayKind.PUSH_MOBILE_MONEY: GatewayConfig(
            kind=GatewayKind.PUSH_MOBILE_MONEY,
            name="mpesa_express",
            callback_url=f"{CALLBACK_BASE_URL}/mpesa/callback",
            merchant_code="174379",
            api_key="daraja-key",
            api_secret="daraja-secret",
            passkey="daraja-passkey",
            **common,
        ),
        GatewayKind.BANK_CHECKOUT: GatewayConfig(
            kind=GatewayKind.BANK_CHECKOUT,
            name="jenga_checkout",
            callback_url=f"{CALLBACK_BASE_URL}/jenga/callback",
            checkout_url="https://checkout.gateway.test/processPayment",
            merchant_code="JM-0042",
            merchant_name="Greenfield Academy",
            account_number="1100194977404",
            api_key="jenga-key",
            api_secret="jenga-secret",
            **common,
        ),
        GatewayKind.BANK_PUSH_USSD: GatewayConfig(
            kind=GatewayKind.BANK_PUSH_USSD,
            name="jenga_push",
            callback_url=f"{CALLBACK_BASE_URL}/jenga-push/callback",
            merchant_code="JM-0042",
            merchant_name="Greenfield Academy",
            account_number="1100194977404",
            api_key="jenga-key",
            api_secret="jenga-secret",
            **common,
        ),
        GatewayKind.MANUAL: GatewayConfig(kind=GatewayKind.MANUAL, name="manual", enabled=True),
    }


@pytest.fixture
def credentials(gateway_configs, http_client):
    return CredentialProvider(gateway_configs, cache=InMemoryTokenCache(), http_client=http_client)


@pytest.fixture
def registry(gateway_configs, credentials, http_client):
    return AdapterRegistry.build(gateway_configs, credentials=credentials, http_client=http_client)


# ==================== Services ====================


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def enrollment():
    return RecordingEnrollment()


@pytest.fixture
def orchestrator(db, registry, notifier, enrollment):
    return SettlementOrchestrator(
        db,
        registry,
        notifier=notifier,
        enrollment=enrollment,
        retry_backoff=0,
        sleep=lambda seconds: None,
    )
