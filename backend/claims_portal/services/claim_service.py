"""
Claim Service - review workflow for one portal.

Keeps the guards and column updates in ``workflow`` and does the I/O around
them: loading claims, persisting updates, reverting inconsistent approvals
and notifying claim owners.
"""
import logging
from typing import Any, Dict, List, Optional

from claims_portal.core.exceptions import AuthenticationError, BackendError, NotFoundError, WorkflowError
from claims_portal.models import Claim, DecisionType, Document, ReviewerStatus
from claims_portal.services import display
from claims_portal.services import workflow
from claims_portal.services.notifications import NotificationClient
from claims_portal.services.storage import format_file_size, preview_kind
from claims_portal.services.workflow import CAR_COMPANY, INSURANCE_COMPANY, ReviewerTrack

logger = logging.getLogger(__name__)

VIEW_ONLY_MESSAGE = "Claim is approved. Documents are view-only."
SESSION_EXPIRED_MESSAGE = "User session expired. Please login again."


def _apply(row: Any, values: Dict[str, Any]) -> None:
    for key, value in values.items():
        setattr(row, key, value)


def reviewer_status(claim: Claim, track: ReviewerTrack) -> str:
    default = ReviewerStatus.pending.value if track is CAR_COMPANY else ""
    return (getattr(claim, track.status_field, None) or default).lower()


def filter_claims(
    claims: List[Claim],
    track: ReviewerTrack,
    search: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Claim]:
    """
    Filter claims by free-text search and reviewer status.

    Args:
        claims: Claims with their owner loaded
        track: Reviewer whose status column is compared
        search: Matched against claim number, owner name and owner email
        status: Reviewer status value; empty or ``all`` keeps everything

    Returns:
        Claims matching both filters, in input order
    """
    term = (search or "").strip().lower()
    status = (status or "").strip().lower()

    def matches(claim: Claim) -> bool:
        if status and status != "all" and reviewer_status(claim, track) != status:
            return False
        if not term:
            return True
        owner = claim.user
        haystack = [
            claim.claim_number,
            owner.name if owner else None,
            owner.email if owner else None,
        ]
        return any(term in value.lower() for value in haystack if value)

    return [claim for claim in claims if matches(claim)]


def owner_summary(claim: Claim) -> Dict[str, Any]:
    owner = claim.user
    if owner is None:
        return {"id": claim.user_id, "name": "Unknown", "email": None, "phone": None}
    return {"id": owner.id, "name": owner.name or "Unknown", "email": owner.email, "phone": owner.phone}


def document_summary(doc: Document, track: ReviewerTrack) -> Dict[str, Any]:
    note = getattr(doc, track.verification_notes_field)
    return {
        "id": doc.id,
        "type": doc.type,
        "type_name": display.document_type_name(doc.type),
        "file_name": doc.file_name,
        "file_size": format_file_size(doc.file_size_bytes),
        "preview": preview_kind(doc.file_name),
        "is_primary": bool(doc.is_primary),
        "state": workflow.document_state(doc, track),
        "verified": bool(getattr(doc, track.verified_field)),
        "verification_date": getattr(doc, track.verification_date_field),
        "rejection_reason": note,
        "rejection_label": display.rejection_reason_label(note),
        "verified_by_car_company": bool(doc.verified_by_car_company),
        "created_at": doc.created_at,
    }


class PortalClaimService:
    """Claim review operations for one reviewer track."""

    def __init__(
        self,
        track: ReviewerTrack,
        repository,
        notifier: Optional[NotificationClient] = None,
    ):
        """
        Initialize claim service.

        Args:
            track: Car company or insurance company track
            repository: ClaimRepository bound to a session
            notifier: Client used to notify claim owners; None disables notifications
        """
        self.track = track
        self.repository = repository
        self.notifier = notifier

    # -------------------------------------------------------------------------
    # List view
    # -------------------------------------------------------------------------

    async def run_migration(self) -> int:
        """
        Derive reviewer status columns left unset by older clients.

        Best effort: failures are logged and the list loads anyway.
        """
        try:
            if self.track is CAR_COMPANY:
                candidates = await self.repository.claims_needing_status_migration()
            else:
                candidates = await self.repository.approved_claims_missing_insurance_flag()

            migrated = 0
            for claim in candidates:
                values = workflow.migrate_reviewer_status(claim, self.track)
                if values:
                    await self.repository.update_claim(claim.id, values)
                    _apply(claim, values)
                    migrated += 1
        except BackendError as e:
            logger.warning(f"Status migration skipped: {e.message}")
            return 0

        if migrated:
            logger.info(f"Migrated {self.track.name} status on {migrated} claim(s)")
        return migrated

    async def revert_inconsistent_approvals(self, claims: List[Claim]) -> Optional[List[str]]:
        """
        Revert approvals whose relevant documents are not all verified.

        Returns:
            Ids of the reverted claims, or None when the write failed. The
            failed write rolls the session back, so ``claims`` must be
            reloaded before use.
        """
        ids = workflow.find_claims_to_revert(claims, self.track)
        if not ids:
            return []

        values = workflow.revert_update(self.track)
        try:
            await self.repository.update_claims(ids, values)
        except BackendError as e:
            logger.warning(f"Could not revert {len(ids)} inconsistent approval(s): {e.message}")
            return None

        for claim in claims:
            if claim.id in ids:
                _apply(claim, values)
        logger.info(f"Reverted {self.track.name} approval on claims {ids}")
        return ids

    def summarize(self, claim: Claim) -> Dict[str, Any]:
        documents = claim.documents or []
        counts = workflow.document_counts(documents, self.track)
        status = reviewer_status(claim, self.track)
        return {
            "id": claim.id,
            "claim_number": claim.claim_number,
            "status": claim.status,
            "status_label": display.format_status(claim.status),
            "reviewer_status": status,
            "reviewer_status_label": display.format_status(status),
            "is_approved": bool(getattr(claim, self.track.approval_flag_field)),
            "owner": owner_summary(claim),
            "vehicle": display.vehicle_summary(claim),
            "estimated_damage_cost": display.format_currency(claim.estimated_damage_cost),
            "documents": {
                "total": counts.total,
                "verified": counts.verified,
                "rejected": counts.rejected,
                "pending": counts.pending,
            },
            "ready_for_approval": workflow.all_verified(documents, self.track),
            "view_only": workflow.is_finalized(claim, self.track),
            "created_at": claim.created_at,
            "submitted_at": claim.submitted_at,
        }

    async def load_claims(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Load the portal's claim list.

        Runs the migration and consistency sweeps first, so every reload
        heals approvals that drifted from their documents.
        """
        await self.run_migration()

        claims = await self.repository.list_claims_with_documents()
        if await self.revert_inconsistent_approvals(claims) is None:
            claims = await self.repository.list_claims_with_documents()

        if self.track is INSURANCE_COMPANY:
            claims = [claim for claim in claims if workflow.is_insurance_eligible(claim.documents or [])]

        claims = filter_claims(claims, self.track, search=search, status=status)
        return [self.summarize(claim) for claim in claims]

    # -------------------------------------------------------------------------
    # Detail view
    # -------------------------------------------------------------------------

    async def _get_claim(self, claim_id: str) -> Claim:
        claim = await self.repository.get_claim(claim_id)
        if claim is None:
            raise NotFoundError("Claim not found", detail=claim_id)
        if self.track is INSURANCE_COMPANY and not workflow.is_insurance_eligible(claim.documents or []):
            raise NotFoundError("Claim not found", detail="Awaiting car company verification")
        return claim

    def _documents(self, claim: Claim) -> List[Document]:
        return workflow.relevant_documents(claim.documents or [], self.track)

    def _state(self, claim: Claim, documents: List[Document]) -> Dict[str, Any]:
        counts = workflow.document_counts(documents, self.track)
        controls = workflow.decision_controls(claim, documents, self.track)
        return {
            "counts": {
                "total": counts.total,
                "verified": counts.verified,
                "rejected": counts.rejected,
                "pending": counts.pending,
            },
            "controls": {
                "approve_enabled": controls.approve_enabled,
                "reject_enabled": controls.reject_enabled,
                "view_only": controls.view_only,
            },
        }

    async def load_claim_detail(self, claim_id: str) -> Dict[str, Any]:
        claim = await self._get_claim(claim_id)
        documents = self._documents(claim)

        rejected = [
            {
                "document_id": doc.id,
                "type_name": display.document_type_name(doc.type),
                "reason": display.rejection_reason_label(getattr(doc, self.track.verification_notes_field)),
            }
            for doc in documents
            if workflow.document_state(doc, self.track) == "rejected"
        ]

        return {
            "claim": self.summarize(claim),
            "approval_notes": getattr(claim, self.track.approval_notes_field),
            "approval_date": getattr(claim, self.track.approval_date_field),
            "documents": [document_summary(doc, self.track) for doc in documents],
            "rejected_documents": rejected,
            **self._state(claim, documents),
        }

    # -------------------------------------------------------------------------
    # Claim decision
    # -------------------------------------------------------------------------

    async def decide(self, claim_id: str, decision: DecisionType, notes: Optional[str] = None) -> Dict[str, Any]:
        """
        Approve, reject or mark a claim under review.

        Raises:
            WorkflowError: the decision is not allowed in the claim's state
        """
        claim = await self._get_claim(claim_id)
        documents = self._documents(claim)
        decision = DecisionType(decision)

        values = workflow.build_decision_update(self.track, decision, claim, documents, notes)
        await self.repository.update_claim(claim.id, values)
        _apply(claim, values)
        logger.info(f"{self.track.label} set claim {claim.claim_number} to {decision.value}")

        self.notify_owner(claim, decision, notes)

        return {
            "claim": self.summarize(claim),
            **self._state(claim, documents),
        }

    def notify_owner(self, claim: Claim, decision: DecisionType, notes: Optional[str]) -> None:
        if self.notifier is None:
            return
        message = workflow.build_notification(
            self.track,
            decision,
            claim.claim_number or claim.id,
            (notes or "").strip() or None,
        )
        self.notifier.dispatch(claim.user_id, message.title, message.body, message.status)

    # -------------------------------------------------------------------------
    # Document verification
    # -------------------------------------------------------------------------

    def _document_for_update(self, claim: Claim, document_id: str, actor_id: Optional[str]) -> Document:
        if workflow.is_finalized(claim, self.track):
            raise WorkflowError(VIEW_ONLY_MESSAGE)
        if not actor_id:
            raise AuthenticationError(SESSION_EXPIRED_MESSAGE, redirect="/")
        return self._find_document(claim, document_id)

    async def _clear_claim_approval(self, claim: Claim) -> Claim:
        """Clear the reviewer's approval; returns the claim to keep working with."""
        claim_id = claim.id
        values = workflow.approval_clear_update(claim, self.track)
        try:
            await self.repository.update_claim(claim_id, values)
        except BackendError as e:
            logger.warning(f"Failed to clear approval on claim {claim_id}: {e.message}")
            # The rollback expired every loaded row
            return await self._get_claim(claim_id)
        _apply(claim, values)
        return claim

    async def _guard_auto_approval(self, claim: Claim) -> Claim:
        """Undo an approval the platform set on its own once every document was verified."""
        claim_id = claim.id
        try:
            fresh = await self.repository.get_claim(claim_id)
            if fresh is None or not workflow.is_auto_approved(fresh, self.track):
                return fresh or claim
            values = {
                self.track.approval_flag_field: False,
                self.track.status_field: ReviewerStatus.pending.value,
            }
            await self.repository.update_claim(claim_id, values)
            _apply(fresh, values)
            logger.info(f"Reverted automatic approval on claim {claim_id}")
            return fresh
        except BackendError as e:
            logger.warning(f"Could not check automatic approval on claim {claim_id}: {e.message}")
            return await self._get_claim(claim_id)

    def _find_document(self, claim: Claim, document_id: str) -> Document:
        for doc in self._documents(claim):
            if doc.id == document_id:
                return doc
        raise NotFoundError("Document not found", detail=document_id)

    async def verify_document(
        self,
        claim_id: str,
        document_id: str,
        actor_id: Optional[str],
        verified: bool = True,
    ) -> Dict[str, Any]:
        """
        Mark a document verified, or remove its verification.

        Removing a verification also clears the claim's approval for this
        reviewer.

        Returns:
            Updated document, counters, decision controls and the next document id
        """
        claim = await self._get_claim(claim_id)
        doc = self._document_for_update(claim, document_id, actor_id)

        values = workflow.build_verification_update(self.track, verified, actor_id)
        await self.repository.update_document(doc.id, values)
        _apply(doc, values)

        if not verified:
            claim = await self._clear_claim_approval(claim)
        elif self.track is CAR_COMPANY and workflow.all_verified(claim.documents or [], self.track):
            claim = await self._guard_auto_approval(claim)

        doc = self._find_document(claim, document_id)
        documents = self._documents(claim)
        return {
            "document": document_summary(doc, self.track),
            "next_document_id": workflow.next_document_id(documents, doc.id),
            **self._state(claim, documents),
        }

    async def reject_document(
        self,
        claim_id: str,
        document_id: str,
        reason: Optional[str],
        other_text: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Reject a document with a reason from the fixed list or free text.

        Raises:
            ValidationError: no reason, or ``others`` without text
            WorkflowError: the claim is view-only
        """
        note = workflow.resolve_rejection_reason(reason, other_text)
        claim = await self._get_claim(claim_id)
        doc = self._document_for_update(claim, document_id, actor_id)

        values = workflow.build_rejection_update(self.track, note)
        await self.repository.update_document(doc.id, values)
        _apply(doc, values)
        claim = await self._clear_claim_approval(claim)

        doc = self._find_document(claim, document_id)
        documents = self._documents(claim)
        return {
            "document": document_summary(doc, self.track),
            "next_document_id": workflow.next_document_id(documents, doc.id),
            **self._state(claim, documents),
        }
