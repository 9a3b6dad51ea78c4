"""Pytest configuration and shared fixtures."""

from datetime import datetime, timezone
from itertools import count
from typing import List, Optional
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from claims_portal.main import app
from claims_portal.models import Claim, Document, User
from claims_portal.repositories import ClaimRepository
from claims_portal.services.notifications import NotificationClient

CAR_CORE_TYPES = [
    "lto_or",
    "lto_cr",
    "drivers_license",
    "owner_valid_id",
    "stencil_strips",
    "damage_photos",
    "job_estimate",
]

_ids = count(1)


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client (lifespan is not run)."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


def make_document(
    doc_type: str = "lto_or",
    car_verified: bool = False,
    car_notes: Optional[str] = None,
    insurance_verified: bool = False,
    insurance_notes: Optional[str] = None,
    **kwargs,
) -> Document:
    number = next(_ids)
    values = dict(
        id=f"doc-{number}",
        claim_id="claim-1",
        type=doc_type,
        file_name=f"{doc_type}.jpg",
        file_size_bytes=2048,
        remote_url=None,
        storage_path=None,
        bucket=None,
        is_primary=False,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        verified_by_car_company=car_verified,
        car_company_verification_notes=car_notes,
        car_company_verification_date=None,
        car_company_verified_by=None,
        verified_by_insurance_company=insurance_verified,
        insurance_verification_notes=insurance_notes,
        insurance_verification_date=None,
        insurance_verified_by=None,
    )
    values.update(kwargs)
    return Document(**values)


def make_claim(documents: Optional[List[Document]] = None, **kwargs) -> Claim:
    values = dict(
        id="claim-1",
        user_id="owner-1",
        claim_number="CLM-0001",
        status="submitted",
        car_company_status="pending",
        is_approved_by_car_company=False,
        car_company_approval_date=None,
        car_company_approval_notes=None,
        is_approved_by_insurance_company=False,
        insurance_company_approval_date=None,
        insurance_company_approval_notes=None,
        is_successful=None,
        vehicle_make="Toyota",
        vehicle_model="Vios",
        vehicle_year="2020",
        vehicle_plate_number="ABC 1234",
        estimated_damage_cost=12500,
        approved_at=None,
        rejected_at=None,
        submitted_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
        created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
        updated_at=None,
    )
    values.update(kwargs)
    claim = Claim(**values)
    claim.user = User(id="owner-1", name="Juan Dela Cruz", email="juan@example.com", phone="0917")
    claim.documents = documents if documents is not None else []
    for doc in claim.documents:
        doc.claim_id = claim.id
    return claim


@pytest.fixture
def car_verified_documents() -> List[Document]:
    """All seven core documents verified by the car company."""
    return [make_document(doc_type, car_verified=True) for doc_type in CAR_CORE_TYPES]


@pytest.fixture
def mock_repository() -> AsyncMock:
    """Repository double; tests set return values per call."""
    repository = AsyncMock(spec=ClaimRepository)
    repository.claims_needing_status_migration.return_value = []
    repository.approved_claims_missing_insurance_flag.return_value = []
    return repository


@pytest.fixture
def mock_notifier() -> Mock:
    """Notification client whose dispatch is recorded instead of sent."""
    return Mock(spec=NotificationClient)
