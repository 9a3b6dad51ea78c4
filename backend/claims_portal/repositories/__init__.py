"""Repository layer modules."""

from claims_portal.repositories.claim_repository import ClaimRepository

__all__ = [
    "ClaimRepository",
]
