"""Repository for claim, document and audit log access.

All queries run against the hosted platform's tables. Failures are logged
and raised as ``BackendError``; nothing is retried. Claim reads overwrite rows
already held by the session, so changes made by platform triggers and rows
expired by a rollback are both picked up.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from claims_portal.core.exceptions import BackendError
from claims_portal.models import AuditLog, Claim, ClaimStatus, Document, ReviewerStatus

logger = logging.getLogger(__name__)

AUDIT_LOG_LIMIT = 200

# Profile tables that may carry a role column; table names are never taken from input
ROLE_LOOKUP_TABLES = frozenset({"profiles", "portal_profiles", "user_profiles"})


class ClaimRepository:
    """Repository for Claim, Document and AuditLog operations."""

    def __init__(self, db_session: AsyncSession):
        """Initialize repository with database session.

        Args:
            db_session: SQLAlchemy async session
        """
        self.db_session = db_session

    async def _fail(self, action: str, error: SQLAlchemyError) -> BackendError:
        logger.error(f"Failed to {action}: {error}")
        await self.db_session.rollback()
        return BackendError(f"Failed to {action}", detail=str(error.__class__.__name__))

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    async def list_claims_with_documents(self) -> List[Claim]:
        """Claims with their owner and documents, newest first."""
        stmt = (
            select(Claim)
            .options(selectinload(Claim.user), selectinload(Claim.documents))
            .order_by(Claim.created_at.desc(), Claim.submitted_at.desc())
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db_session.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._fail("load claims", e) from e
        return list(result.scalars().all())

    async def get_claim(self, claim_id: str) -> Optional[Claim]:
        """Get a claim with its owner and documents.

        Args:
            claim_id: Claim ID

        Returns:
            Claim instance or None if not found
        """
        stmt = (
            select(Claim)
            .options(selectinload(Claim.user), selectinload(Claim.documents))
            .where(Claim.id == claim_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db_session.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._fail("load claim details", e) from e
        return result.scalar_one_or_none()

    async def update_claim(self, claim_id: str, values: Dict[str, Any]) -> None:
        await self.update_claims([claim_id], values)

    async def update_claims(self, claim_ids: Sequence[str], values: Dict[str, Any]) -> int:
        """Apply the same partial update to several claims in one statement.

        Returns:
            Number of rows updated
        """
        if not claim_ids or not values:
            return 0
        stmt = update(Claim).where(Claim.id.in_(list(claim_ids))).values(**values)
        try:
            result = await self.db_session.execute(stmt)
            await self.db_session.commit()
        except SQLAlchemyError as e:
            raise await self._fail("update claim", e) from e

        logger.info(f"Updated {result.rowcount} claim(s) with {sorted(values)}")
        return result.rowcount

    async def claims_needing_status_migration(self) -> List[Claim]:
        """Claims whose car company status was never derived from the legacy flag."""
        stmt = select(Claim).where(
            or_(Claim.car_company_status.is_(None), Claim.car_company_status == ReviewerStatus.pending.value)
        )
        try:
            result = await self.db_session.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._fail("load claims for migration", e) from e
        return list(result.scalars().all())

    async def approved_claims_missing_insurance_flag(self) -> List[Claim]:
        stmt = select(Claim).where(
            Claim.status == ClaimStatus.approved.value,
            or_(Claim.is_approved_by_insurance_company.is_(None), Claim.is_approved_by_insurance_company.is_(False)),
        )
        try:
            result = await self.db_session.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._fail("load claims for migration", e) from e
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    async def get_document(self, document_id: str) -> Optional[Document]:
        try:
            return await self.db_session.get(Document, document_id)
        except SQLAlchemyError as e:
            raise await self._fail("load document", e) from e

    async def update_document(self, document_id: str, values: Dict[str, Any]) -> None:
        stmt = update(Document).where(Document.id == document_id).values(**values)
        try:
            await self.db_session.execute(stmt)
            await self.db_session.commit()
        except SQLAlchemyError as e:
            raise await self._fail("update document", e) from e

        logger.info(f"Updated document {document_id} with {sorted(values)}")

    # -------------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------------

    async def lookup_role(self, table: str, column: str, identity_id: str) -> Optional[str]:
        """Read a role value from one of the profile tables.

        Raises:
            BackendError: the table is unknown, missing or the query fails
        """
        if table not in ROLE_LOOKUP_TABLES or column != "role":
            raise BackendError(f"Role lookup not allowed on {table}.{column}")

        stmt = text(f"SELECT {column} FROM {table} WHERE id = :identity_id LIMIT 1")
        try:
            result = await self.db_session.execute(stmt, {"identity_id": identity_id})
        except SQLAlchemyError as e:
            # Missing tables are expected on some deployments
            logger.debug(f"Role lookup in {table} failed: {e.__class__.__name__}")
            await self.db_session.rollback()
            raise BackendError(f"Role lookup in {table} failed") from e
        return result.scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Audit logs
    # -------------------------------------------------------------------------

    async def list_audit_logs(
        self,
        action: Optional[str] = None,
        outcome: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = AUDIT_LOG_LIMIT,
    ) -> List[AuditLog]:
        """Newest audit entries matching the filters.

        Args:
            action: Exact action code
            outcome: Exact outcome code
            search: Case-insensitive match on claim number or actor name
            limit: Maximum number of entries

        Returns:
            Audit entries ordered by timestamp, newest first
        """
        stmt = (
            select(AuditLog)
            .options(selectinload(AuditLog.user))
            .order_by(AuditLog.timestamp.desc())
            .limit(limit)
        )
        if action:
            stmt = stmt.where(AuditLog.action == action)
        if outcome:
            stmt = stmt.where(AuditLog.outcome == outcome)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(AuditLog.claim_number.ilike(pattern), AuditLog.user_name.ilike(pattern)))

        try:
            result = await self.db_session.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._fail("load audit logs", e) from e
        return list(result.scalars().all())

    async def get_audit_log(self, log_id: str) -> Optional[AuditLog]:
        stmt = select(AuditLog).options(selectinload(AuditLog.user)).where(AuditLog.id == log_id)
        try:
            result = await self.db_session.execute(stmt)
        except SQLAlchemyError as e:
            raise await self._fail("load audit log", e) from e
        return result.scalar_one_or_none()
