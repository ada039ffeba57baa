"""Pytest fixtures for testing"""

import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from tawarruq_gateway.api.dependencies import get_orchestrator
from tawarruq_gateway.api.main import create_app
from tawarruq_gateway.config import Settings
from tawarruq_gateway.domain.models import CommodityPurchase, CommoditySale, CommodityType
from tawarruq_gateway.domain.status import FinancingStatus
from tawarruq_gateway.infrastructure.clients.venue import SimulatedVenueClient
from tawarruq_gateway.infrastructure.database.models import Base, FinancingApplication
from tawarruq_gateway.infrastructure.database.repositories import ApplicationRepository
from tawarruq_gateway.infrastructure.database.session import get_db
from tawarruq_gateway.services.orchestrator import TawarruqOrchestrator

BANK = "Agrobank"
CUSTOMER = "Aisyah binti Ahmad"

# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class TamperingVenue(SimulatedVenueClient):
    """Simulated venue whose output (or failure) a test can rewrite"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.purchase_tamper: Optional[Callable[[CommodityPurchase], CommodityPurchase]] = None
        self.sale_tamper: Optional[Callable[[CommoditySale], CommoditySale]] = None
        self.purchase_error: Optional[Exception] = None
        self.sale_error: Optional[Exception] = None
        self.purchase_calls = 0
        self.sale_calls = 0

    async def purchase(self, principal_amount, buyer):
        self.purchase_calls += 1
        if self.purchase_error:
            raise self.purchase_error
        result = await super().purchase(principal_amount, buyer)
        return self.purchase_tamper(result) if self.purchase_tamper else result

    async def sell(self, purchase, seller):
        self.sale_calls += 1
        if self.sale_error:
            raise self.sale_error
        result = await super().sell(purchase, seller)
        return self.sale_tamper(result) if self.sale_tamper else result


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        bank_identity=BANK,
        settlement_delay_seconds=0,
        venue_latency_seconds=0,
        venue_timeout_seconds=2.0,
    )


@pytest.fixture
def venue() -> TamperingVenue:
    return TamperingVenue(rng=random.Random(1234))


@pytest.fixture
def orchestrator(db: Session, venue: TamperingVenue, test_settings: Settings) -> TawarruqOrchestrator:
    return TawarruqOrchestrator(
        session_factory=TestingSessionLocal,
        venue_client=venue,
        config=test_settings,
    )


@pytest.fixture
def client(db: Session, orchestrator: TawarruqOrchestrator) -> TestClient:
    """Create FastAPI test client with test database and simulated venue"""
    app = create_app()

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return TestClient(app)


@pytest.fixture
def make_application(db: Session) -> Callable[..., FinancingApplication]:
    """Persist an application the way the applicant-side workflow would"""

    def _make(
        principal: str = "50000",
        status: FinancingStatus = FinancingStatus.SUBMITTED,
        applicant_name: Optional[str] = CUSTOMER,
    ) -> FinancingApplication:
        application = ApplicationRepository(db).create_application(
            customer_id="cust-001",
            principal_amount=Decimal(principal),
            tenure_months=36,
            applicant_name=applicant_name,
            status=status,
        )
        db.commit()
        return application

    return _make


@pytest.fixture
def reload(db: Session) -> Callable[[FinancingApplication], FinancingApplication]:
    """Re-read an application after the orchestrator wrote through its own sessions"""

    def _reload(application: FinancingApplication) -> FinancingApplication:
        db.expire_all()
        return db.get(FinancingApplication, application.id)

    return _reload


@pytest.fixture
def t1_purchase() -> CommodityPurchase:
    """A well-formed T1 purchase of 25 MT CPO at MYR 4000"""
    return CommodityPurchase(
        commodity_id="COM-LQ1Z3K-AB12",
        commodity_type=CommodityType.CPO,
        quantity=Decimal("25.000"),
        unit_price=Decimal("4000.00"),
        total_amount=Decimal("100000"),
        venue_reference="BSAS-LQ1Z3K-CD34",
        timestamp=datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc),
        seller="BSAS Trading Platform",
        buyer=BANK,
        certificate_number="CERT-LQ1Z3K-EF56",
    )


@pytest.fixture
def t2_sale(t1_purchase: CommodityPurchase) -> CommoditySale:
    """The matching T2 sale, two seconds later at 0.2% below T1"""
    return CommoditySale(
        commodity_id=t1_purchase.commodity_id,
        commodity_type=t1_purchase.commodity_type,
        quantity=t1_purchase.quantity,
        unit_price=Decimal("3992.00"),
        total_amount=Decimal("99800.00"),
        venue_reference="BSAS-LQ1Z3M-GH78",
        timestamp=t1_purchase.timestamp + timedelta(seconds=2),
        seller=CUSTOMER,
        buyer="Third Party Broker",
        certificate_number="CERT-LQ1Z3M-IJ90",
    )
