"""Database models."""

from claims_portal.core.database import Base
from claims_portal.models.claim import (
    AuditLog,
    Claim,
    ClaimStatus,
    DecisionType,
    Document,
    DocumentType,
    ReviewerStatus,
    User,
)

__all__ = [
    "Base",
    "Claim",
    "Document",
    "User",
    "AuditLog",
    "ClaimStatus",
    "ReviewerStatus",
    "DocumentType",
    "DecisionType",
]
