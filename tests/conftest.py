"""
Pytest fixtures for the claims kernel test suite.

Provides:
- A connected gateway for every adapter that runs without a server
  (in-memory and SQLite through SQLAlchemy)
- A fully wired ClaimsRuntime over that gateway with a deterministic clock
- Actor factories and claim data builders
- Structured log capture

Environment Variables:
- CLAIMS_TEST_POSTGRES_URL: when set, the ``gateway`` fixture also runs
  every contract test against that PostgreSQL database (marker: postgres).
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest

from claims_kernel.db.memory import InMemoryGateway
from claims_kernel.db.sql import SqlAlchemyGateway
from claims_kernel.domain.claims import ActorRole, DocumentType
from claims_kernel.domain.clock import DeterministicClock
from claims_kernel.domain.requests import (
    Actor,
    ApplicationData,
    ExpenseItemData,
    ReviewFlags,
)
from claims_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from claims_kernel.runtime import ClaimsRuntime

POSTGRES_URL_ENV = "CLAIMS_TEST_POSTGRES_URL"
SQLITE_MEMORY_URL = "sqlite+pysqlite:///:memory:"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture claims_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, runtime):
            runtime.submit_application(...)
            logs = captured_logs()
            assert any(r["message"] == "application_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("claims_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc))


# =============================================================================
# Gateways
# =============================================================================


def _gateway_params():
    params = [
        pytest.param("memory", id="memory"),
        pytest.param("sqlite", id="sqlite"),
    ]
    if os.environ.get(POSTGRES_URL_ENV):
        params.append(pytest.param("postgres", id="postgres", marks=pytest.mark.postgres))
    return params


def build_gateway(kind: str):
    if kind == "memory":
        return InMemoryGateway()
    if kind == "sqlite":
        return SqlAlchemyGateway(SQLITE_MEMORY_URL)
    return SqlAlchemyGateway(os.environ[POSTGRES_URL_ENV])


def _truncate_postgres(gateway: SqlAlchemyGateway) -> None:
    from claims_kernel.db.base import Base

    with gateway.engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(params=_gateway_params())
def gateway(request):
    """A connected gateway; every test gets an empty store."""
    gw = build_gateway(request.param)
    gw.connect()
    if request.param == "postgres":
        _truncate_postgres(gw)
    yield gw
    gw.disconnect()


@pytest.fixture
def memory_gateway():
    gw = InMemoryGateway()
    gw.connect()
    yield gw
    gw.disconnect()


@pytest.fixture
def sqlite_gateway():
    gw = SqlAlchemyGateway(SQLITE_MEMORY_URL)
    gw.connect()
    yield gw
    gw.disconnect()


@pytest.fixture
def runtime(gateway, deterministic_clock):
    return ClaimsRuntime(gateway, deterministic_clock)


# =============================================================================
# Actors and claim data
# =============================================================================


def make_actor(role=ActorRole.EMPLOYEE, **overrides) -> Actor:
    values = {
        "id": uuid4(),
        "role": role,
        "email": f"{getattr(role, 'value', role)}@example.org",
        "name": f"Test {getattr(role, 'value', role)}",
        "ip_address": "10.0.0.7",
        "user_agent": "pytest",
    }
    values.update(overrides)
    return Actor(**values)


@pytest.fixture
def employee():
    return make_actor(ActorRole.EMPLOYEE, employee_id="EMP-001", name="Asha Verma")


@pytest.fixture
def other_employee():
    return make_actor(ActorRole.EMPLOYEE, employee_id="EMP-002", name="Ravi Nair")


@pytest.fixture
def admin():
    return make_actor(ActorRole.ADMIN)


@pytest.fixture
def medical_officer():
    return make_actor(ActorRole.MEDICAL_OFFICER)


def application_data(employee_id: str = "EMP-001", **overrides) -> ApplicationData:
    values = {
        "employee_name": "Asha Verma",
        "employee_id": employee_id,
        "patient_name": "Meera Verma",
        "relationship_with_employee": "daughter",
        "hospital_name": "City General Hospital",
        "treatment_type": "opd",
        "department": "Finance",
        "medical_card_number": "MC-7781",
        "card_valid_until": date(2025, 12, 31),
        "email": "asha@example.org",
        "mobile_number": "+91-9000000000",
    }
    values.update(overrides)
    return ApplicationData(**values)


def expense(bill_number: str = "B-1", amount="1500.00", bill_date=date(2024, 2, 20)) -> ExpenseItemData:
    return ExpenseItemData(
        bill_number=bill_number,
        bill_date=bill_date,
        description=f"Consultation {bill_number}",
        amount_claimed=amount,
    )


@pytest.fixture
def submit(runtime, employee):
    """Submit a claim and return its receipt."""

    def _submit(actor=None, items=None, **overrides):
        actor = actor or employee
        data = application_data(actor.employee_id or "EMP-001", **overrides)
        if items is None:
            items = [expense("B-1", "1500.00"), expense("B-2", "500.50")]
        return runtime.submit_application(data, items, actor)

    return _submit


@pytest.fixture
def under_review(runtime, submit, medical_officer):
    """A claim moved to under_review by a medical officer."""

    def _under_review(**kwargs):
        receipt = submit(**kwargs)
        runtime.update_status(receipt.id, "under_review", medical_officer)
        return receipt

    return _under_review


@pytest.fixture
def final_review(runtime, medical_officer):
    """Record a final-stage review with the given decision."""

    def _final_review(application_id, decision="approved", actor=None):
        return runtime.create_review(
            application_id, "final", decision,
            ReviewFlags(
                eligibility_verified=True,
                documents_verified=True,
                medical_validity_checked=True,
                expenses_validated=True,
                completeness_score=90,
            ),
            actor or medical_officer,
        )

    return _final_review


@pytest.fixture
def register_document(runtime, employee):
    def _register(application_id, document_type=DocumentType.BILL, actor=None, file_name="bill.pdf"):
        return runtime.documents.register_document(
            application_id,
            document_type,
            file_name,
            "application/pdf",
            20480,
            f"s3://claims/{application_id}/{file_name}",
            actor or employee,
        )

    return _register


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "postgres: test requires a PostgreSQL server (CLAIMS_TEST_POSTGRES_URL)"
    )
    config.addinivalue_line("markers", "concurrency: multi-threaded race tests")


@pytest.fixture
def actor_factory():
    return make_actor


@pytest.fixture
def claim_data():
    return application_data


@pytest.fixture
def expense_data():
    return expense
