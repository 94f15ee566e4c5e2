"""
Shared fixtures: a throwaway SQLite file per test, built with the same engine
factory the app uses (BEGIN IMMEDIATE included), plus a tenant with one
branch, one client and an open drawer.
"""
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from settlement.db.base import Base
from settlement.db.init_db import init_db
from settlement.db.session import build_engine
from settlement.models.client import Client
from settlement.models.tenant import Branch, Tenant
from settlement.services import pos_session_service


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'settlement_test.db'}")
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def tenant(db):
    tenant = Tenant(name="Acme Trading", currency="SAR")
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def branch(db, tenant):
    branch = Branch(tenant_id=tenant.id, name="Main Street")
    db.add(branch)
    db.commit()
    return branch


@pytest.fixture
def client(db, tenant):
    client = Client(tenant_id=tenant.id, name="Layla Haddad", phone="+966500000000")
    db.add(client)
    db.commit()
    return client


@pytest.fixture
def open_session(db, tenant, branch):
    return pos_session_service.open_session(
        db, tenant_id=tenant.id, opened_by="cashier-1", opening_cash=Decimal("500"), branch_id=branch.id
    )
