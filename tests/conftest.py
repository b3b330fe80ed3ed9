import sys
from collections.abc import Callable, Generator
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pgdesk.config import Base  # noqa: E402
import pgdesk.config as app_config  # noqa: E402
import pgdesk.main as app_main  # noqa: E402
# Import the full models module so every table registers with Base metadata.
from pgdesk.models import models as _all_models  # noqa: E402,F401
from pgdesk.models.models import Charge, Owner, Property, Room, Tenant, TenantStay  # noqa: E402
from pgdesk.services.store import OwnerContext, RowStore  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _configure_global_test_db(tmp_path_factory):
    """Point the app-wide engine at a throwaway database with all tables."""
    db_dir = tmp_path_factory.mktemp("globaldb")
    engine = create_engine(f"sqlite:///{db_dir / 'app.db'}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    app_config.SessionLocal = SessionLocal
    app_config.engine = engine
    app_main.engine = engine
    yield
    engine.dispose()


@pytest.fixture(autouse=True)
def _pdf_output_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(app_config.settings, "pdf_output_dir", str(tmp_path / "pdfs"))


@pytest.fixture
def db_session(tmp_path) -> Generator[Session, None, None]:
    """Provide a fresh SQLite database for each test."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def owner(db_session: Session) -> Owner:
    record = Owner(name="Sunrise PG", email="ops@sunrise.example")
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture
def store(db_session: Session, owner: Owner) -> RowStore:
    return RowStore(db_session, OwnerContext(owner_id=owner.id, actor="tester"))


@pytest.fixture
def create_room(db_session: Session, owner: Owner) -> Callable[..., Room]:
    counter = {"value": 0}

    def _create(property_name: str = "Sunrise Residency", room_number: Optional[str] = None, status: str = "occupied") -> Room:
        counter["value"] += 1
        prop = db_session.query(Property).filter(Property.name == property_name).first()
        if prop is None:
            prop = Property(owner_id=owner.id, name=property_name, city="Pune")
            db_session.add(prop)
            db_session.flush()
        room = Room(
            owner_id=owner.id,
            property_id=prop.id,
            room_number=room_number or f"{100 + counter['value']}",
            status=status,
        )
        db_session.add(room)
        db_session.commit()
        return room

    return _create


@pytest.fixture
def create_tenant(db_session: Session, owner: Owner, create_room) -> Callable[..., Tenant]:
    def _create(
        name: str = "Asha Rao",
        check_in_date: date = date(2024, 1, 1),
        monthly_rent: str = "8000",
        security_deposit: str = "16000",
        status: str = "active",
        room: Optional[Room] = None,
        phone: Optional[str] = "+91 98765 43210",
        with_stay: bool = True,
    ) -> Tenant:
        room = room or create_room()
        tenant = Tenant(
            owner_id=owner.id,
            property_id=room.property_id,
            room_id=room.id,
            name=name,
            phone=phone,
            monthly_rent=Decimal(monthly_rent),
            security_deposit=Decimal(security_deposit),
            check_in_date=check_in_date,
            status=status,
        )
        db_session.add(tenant)
        db_session.flush()
        if with_stay:
            db_session.add(
                TenantStay(
                    owner_id=owner.id,
                    tenant_id=tenant.id,
                    property_id=room.property_id,
                    room_id=room.id,
                    stay_number=1,
                    join_date=check_in_date,
                    monthly_rent=Decimal(monthly_rent),
                    status="active",
                )
            )
        db_session.commit()
        return tenant

    return _create


@pytest.fixture
def create_charge(db_session: Session, owner: Owner) -> Callable[..., Charge]:
    def _create(
        tenant: Tenant,
        amount: str = "8000",
        due_date: date = date(2024, 2, 5),
        status: str = "pending",
        paid_amount: str = "0",
        for_period: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Charge:
        charge = Charge(
            owner_id=owner.id,
            tenant_id=tenant.id,
            property_id=tenant.property_id,
            amount=Decimal(amount),
            paid_amount=Decimal(paid_amount),
            due_date=due_date,
            status=status,
            for_period=for_period,
            charge_type="rent",
            created_at=created_at or datetime(due_date.year, due_date.month, 1),
        )
        db_session.add(charge)
        db_session.commit()
        return charge

    return _create
