import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT"] = "10000/minute"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rigledger.db import Base, get_db
from rigledger.models.models import Machine, Compressor, InventoryItem, Worker
from rigledger.services import scheduler
from rigledger.auth.security import create_access_token


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Sessions on a file-backed database, so two sessions see each other's commits"""
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}", future=True)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    engine.dispose()


@pytest.fixture
def client(session_factory):
    from rigledger.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_access_token('supervisor', roles=['admin'])}"}


@pytest.fixture
def machine(db):
    m = Machine(machine_number="DRL-01", machine_type="Crawler drill", rpm=1000)
    db.add(m)
    db.flush()
    scheduler.replace_schedule(db, m, [{"service_name": "Engine Oil", "cycle_length": 250, "last_service_rpm": 900}])
    db.commit()
    return m


@pytest.fixture
def compressor(db):
    c = Compressor(name="CMP-01", rpm=500)
    db.add(c)
    db.flush()
    scheduler.replace_schedule(db, c, [{"service_name": "Compressor Service", "cycle_length": 250, "last_service_rpm": 400}])
    db.commit()
    return c


@pytest.fixture
def operator(db):
    w = Worker(employee_code="EMP-001", name="R. Kumar", designation="Operator", daily_salary=900, advanced_amount=500)
    db.add(w)
    db.commit()
    return w


@pytest.fixture
def helper(db):
    w = Worker(employee_code="EMP-002", name="M. Ali", designation="Helper", daily_salary=600, advanced_amount=0)
    db.add(w)
    db.commit()
    return w


@pytest.fixture
def oil_filter(db):
    item = InventoryItem(name="Engine oil filter", part_number="EOF-220", category="service_item", balance=5, inward=5, outward=0)
    db.add(item)
    db.commit()
    return item


@pytest.fixture
def drill_bit(db):
    item = InventoryItem(name="Button bit 115mm", part_number="BB-115", category="drilling_tool", balance=2, inward=2, outward=0)
    db.add(item)
    db.commit()
    return item
