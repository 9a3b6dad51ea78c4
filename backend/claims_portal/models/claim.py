"""
ORM mappings for the platform tables the portals read and update.

The tables are owned by the hosted platform; these mappings only describe the
columns the portals touch. Status columns are plain text because historical
rows carry values outside the enumerations below.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from claims_portal.core.database import Base


class ClaimStatus(str, Enum):
    """Claim lifecycle status (``claims.status``)."""
    draft = "draft"
    submitted = "submitted"
    under_review = "under_review"
    approved = "approved"
    rejected = "rejected"
    appealed = "appealed"


class ReviewerStatus(str, Enum):
    """Reviewer-side status track (``claims.car_company_status``)."""
    pending = "pending"
    under_review = "under_review"
    approved = "approved"
    rejected = "rejected"


class DocumentType(str, Enum):
    """Purpose of an uploaded claim document."""
    lto_or = "lto_or"
    lto_cr = "lto_cr"
    drivers_license = "drivers_license"
    owner_valid_id = "owner_valid_id"
    stencil_strips = "stencil_strips"
    damage_photos = "damage_photos"
    job_estimate = "job_estimate"
    insurance_policy = "insurance_policy"
    police_report = "police_report"
    additional_documents = "additional_documents"


class DecisionType(str, Enum):
    """Claim-level decision a reviewer can take."""
    approved = "approved"
    rejected = "rejected"
    under_review = "under_review"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    role: Mapped[Optional[str]] = mapped_column(String(50))


class Claim(Base):
    __tablename__ = "claims"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("users.id"))
    claim_number: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[Optional[str]] = mapped_column(String(32), default=ClaimStatus.draft.value)

    # Car company track
    car_company_status: Mapped[Optional[str]] = mapped_column(String(32))
    is_approved_by_car_company: Mapped[Optional[bool]] = mapped_column(Boolean)
    car_company_approval_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    car_company_approval_notes: Mapped[Optional[str]] = mapped_column(Text)

    # Insurance company track
    is_approved_by_insurance_company: Mapped[Optional[bool]] = mapped_column(Boolean)
    insurance_company_approval_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    insurance_company_approval_notes: Mapped[Optional[str]] = mapped_column(Text)
    is_successful: Mapped[Optional[bool]] = mapped_column(Boolean)

    # Vehicle summary
    vehicle_make: Mapped[Optional[str]] = mapped_column(String(100))
    vehicle_model: Mapped[Optional[str]] = mapped_column(String(100))
    vehicle_year: Mapped[Optional[str]] = mapped_column(String(10))
    vehicle_plate_number: Mapped[Optional[str]] = mapped_column(String(32))
    estimated_damage_cost: Mapped[Optional[float]] = mapped_column(Numeric(14, 2))

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user: Mapped[Optional[User]] = relationship(lazy="raise")
    documents: Mapped[List["Document"]] = relationship(
        back_populates="claim",
        lazy="raise",
        order_by=lambda: (Document.is_primary.desc(), Document.created_at),
    )


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    claim_id: Mapped[str] = mapped_column(UUID(as_uuid=False), ForeignKey("claims.id"))
    type: Mapped[Optional[str]] = mapped_column(String(50))
    file_name: Mapped[Optional[str]] = mapped_column(String(255))
    file_size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger)
    remote_url: Mapped[Optional[str]] = mapped_column(Text)
    storage_path: Mapped[Optional[str]] = mapped_column(Text)
    bucket: Mapped[Optional[str]] = mapped_column(String(100))
    is_primary: Mapped[Optional[bool]] = mapped_column(Boolean, default=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Car company verification track
    verified_by_car_company: Mapped[Optional[bool]] = mapped_column(Boolean, default=False)
    car_company_verification_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    car_company_verification_notes: Mapped[Optional[str]] = mapped_column(Text)
    car_company_verified_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))

    # Insurance company verification track
    verified_by_insurance_company: Mapped[Optional[bool]] = mapped_column(Boolean, default=False)
    insurance_verification_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    insurance_verification_notes: Mapped[Optional[str]] = mapped_column(Text)
    insurance_verified_by: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))

    claim: Mapped[Claim] = relationship(back_populates="documents", lazy="raise")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), ForeignKey("users.id"))
    user_role: Mapped[Optional[str]] = mapped_column(String(50))
    user_name: Mapped[Optional[str]] = mapped_column(String(255))
    claim_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False))
    claim_number: Mapped[Optional[str]] = mapped_column(String(64))
    action: Mapped[Optional[str]] = mapped_column(String(64))
    action_description: Mapped[Optional[str]] = mapped_column(Text)
    timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    outcome: Mapped[Optional[str]] = mapped_column(String(32))
    status: Mapped[Optional[str]] = mapped_column(String(32))
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    log_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSONB)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    user: Mapped[Optional[User]] = relationship(lazy="raise")
