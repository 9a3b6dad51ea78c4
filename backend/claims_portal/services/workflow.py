"""
Claim review workflow.

Each reviewer (car company, insurance company) owns an independent track of
columns on ``claims`` and ``documents``. A track is verified one document at a
time; the claim-level decision is gated by the verification state of the
documents whose type belongs to that reviewer.

Everything here is pure: functions read ORM rows (or any object exposing the
same attributes) and return the column values to write. Persisting them and
notifying the claim owner is the job of ``claim_service``.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence

from claims_portal.core.exceptions import ValidationError, WorkflowError
from claims_portal.models.claim import ClaimStatus, DecisionType, ReviewerStatus


CAR_COMPANY_CORE_TYPES: FrozenSet[str] = frozenset({
    "lto_or",
    "lto_cr",
    "drivers_license",
    "owner_valid_id",
    "stencil_strips",
    "damage_photos",
    "job_estimate",
})

REVIEWABLE_TYPES: FrozenSet[str] = CAR_COMPANY_CORE_TYPES | frozenset({
    "insurance_policy",
    "police_report",
    "additional_documents",
})

REJECTION_REASONS = (
    "document_illegible",
    "document_expired",
    "document_incomplete",
    "document_forged",
    "document_wrong_type",
    "document_mismatch",
    "others",
)

FINAL_STATUSES = frozenset({ClaimStatus.approved.value, ClaimStatus.rejected.value})


@dataclass(frozen=True)
class ReviewerTrack:
    """Column names and document scope of one reviewer's verification track."""

    name: str
    label: str
    document_types: FrozenSet[str]
    # documents
    verified_field: str
    verification_date_field: str
    verification_notes_field: str
    verified_by_field: str
    # claims
    status_field: str
    approval_flag_field: str
    approval_date_field: str
    approval_notes_field: str
    revert_status: str

    def is_relevant(self, document: Any) -> bool:
        return getattr(document, "type", None) in self.document_types


CAR_COMPANY = ReviewerTrack(
    name="car_company",
    label="Car Company",
    document_types=REVIEWABLE_TYPES,
    verified_field="verified_by_car_company",
    verification_date_field="car_company_verification_date",
    verification_notes_field="car_company_verification_notes",
    verified_by_field="car_company_verified_by",
    status_field="car_company_status",
    approval_flag_field="is_approved_by_car_company",
    approval_date_field="car_company_approval_date",
    approval_notes_field="car_company_approval_notes",
    revert_status=ReviewerStatus.pending.value,
)

# The insurance reviewer decides on the claim's own lifecycle status, which has
# no "pending" value; reverted approvals go back to review.
INSURANCE_COMPANY = ReviewerTrack(
    name="insurance_company",
    label="Insurance Company",
    document_types=REVIEWABLE_TYPES,
    verified_field="verified_by_insurance_company",
    verification_date_field="insurance_verification_date",
    verification_notes_field="insurance_verification_notes",
    verified_by_field="insurance_verified_by",
    status_field="status",
    approval_flag_field="is_approved_by_insurance_company",
    approval_date_field="insurance_company_approval_date",
    approval_notes_field="insurance_company_approval_notes",
    revert_status=ClaimStatus.under_review.value,
)


@dataclass(frozen=True)
class DocumentCounts:
    total: int
    verified: int
    rejected: int
    pending: int


@dataclass(frozen=True)
class DecisionControls:
    approve_enabled: bool
    reject_enabled: bool
    view_only: bool


@dataclass(frozen=True)
class Notification:
    title: str
    body: str
    status: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Document verification
# =============================================================================

def relevant_documents(documents: Iterable[Any], track: ReviewerTrack) -> List[Any]:
    return [doc for doc in documents if track.is_relevant(doc)]


def document_state(document: Any, track: ReviewerTrack) -> str:
    """Return ``verified``, ``rejected`` or ``pending`` for one document."""
    if getattr(document, track.verified_field, None):
        return "verified"
    if getattr(document, track.verification_notes_field, None):
        return "rejected"
    return "pending"


def document_counts(documents: Iterable[Any], track: ReviewerTrack) -> DocumentCounts:
    """Count relevant documents per state; a verified document is never also rejected."""
    states = [document_state(doc, track) for doc in relevant_documents(documents, track)]
    verified = states.count("verified")
    rejected = states.count("rejected")
    return DocumentCounts(
        total=len(states),
        verified=verified,
        rejected=rejected,
        pending=len(states) - verified - rejected,
    )


def all_verified(documents: Iterable[Any], track: ReviewerTrack) -> bool:
    relevant = relevant_documents(documents, track)
    return bool(relevant) and all(getattr(doc, track.verified_field, None) for doc in relevant)


def has_unverified(documents: Iterable[Any], track: ReviewerTrack) -> bool:
    return any(not getattr(doc, track.verified_field, None) for doc in relevant_documents(documents, track))


def is_insurance_eligible(documents: Iterable[Any]) -> bool:
    """A claim reaches the insurance queue once the car company verified every core document."""
    core = [doc for doc in documents if getattr(doc, "type", None) in CAR_COMPANY_CORE_TYPES]
    return bool(core) and all(doc.verified_by_car_company for doc in core)


def resolve_rejection_reason(reason: Optional[str], other_text: Optional[str] = None) -> str:
    """Turn a reason picked from the fixed list into the stored note; ``others`` carries free text."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Please select a rejection reason")
    if reason not in REJECTION_REASONS:
        raise ValidationError("Unknown rejection reason", detail=reason)
    if reason == "others":
        custom = (other_text or "").strip()
        if not custom:
            raise ValidationError("Please provide a specific reason")
        return f"Other: {custom}"
    return reason


def build_verification_update(
    track: ReviewerTrack,
    verified: bool,
    actor_id: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    values: Dict[str, Any] = {
        track.verified_field: verified,
        track.verified_by_field: actor_id,
    }
    if verified:
        values[track.verification_date_field] = now or utcnow()
        values[track.verification_notes_field] = None
    else:
        values[track.verification_date_field] = None
    return values


def build_rejection_update(track: ReviewerTrack, note: str) -> Dict[str, Any]:
    return {
        track.verified_field: False,
        track.verification_date_field: None,
        track.verification_notes_field: note,
    }


def next_document_id(documents: Sequence[Any], current_id: str) -> Optional[str]:
    """Id of the document after ``current_id``, or None when it is the last one."""
    ids = [doc.id for doc in documents]
    if current_id not in ids:
        return None
    index = ids.index(current_id)
    return ids[index + 1] if index < len(ids) - 1 else None


# =============================================================================
# Claim decision
# =============================================================================

def is_flagged_approved(claim: Any, track: ReviewerTrack) -> bool:
    return (
        getattr(claim, track.status_field, None) == ClaimStatus.approved.value
        or getattr(claim, track.approval_flag_field, None) is True
    )


def is_finalized(claim: Any, track: ReviewerTrack) -> bool:
    """Approved or rejected claims are view-only for the reviewer."""
    return (getattr(claim, track.status_field, None) or "").lower() in FINAL_STATUSES


def decision_controls(claim: Any, documents: Sequence[Any], track: ReviewerTrack) -> DecisionControls:
    view_only = is_finalized(claim, track)
    flagged = bool(getattr(claim, track.approval_flag_field, None))
    approve_enabled = all_verified(documents, track) and not flagged and not view_only
    if track is INSURANCE_COMPANY:
        approve_enabled = approve_enabled and is_insurance_eligible(documents)
    return DecisionControls(
        approve_enabled=approve_enabled,
        reject_enabled=not flagged and not view_only,
        view_only=view_only,
    )


def build_decision_update(
    track: ReviewerTrack,
    decision: DecisionType,
    claim: Any,
    documents: Sequence[Any],
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Validate a claim-level decision and return the columns to update.

    Raises:
        WorkflowError: the claim is view-only, documents are not all verified
            (approve), or the reason is blank (reject)
    """
    now = now or utcnow()
    notes = (notes or "").strip()
    decision = DecisionType(decision)

    if is_finalized(claim, track):
        raise WorkflowError(f"Claim is already {getattr(claim, track.status_field)}. It is view-only.")

    values: Dict[str, Any] = {}

    if decision is DecisionType.approved:
        if not decision_controls(claim, documents, track).approve_enabled:
            raise WorkflowError("All documents must be verified before the claim can be approved")
        values[track.status_field] = ClaimStatus.approved.value
        values[track.approval_flag_field] = True
        values[track.approval_date_field] = now
        values["approved_at"] = now
        if track is INSURANCE_COMPANY:
            values["is_successful"] = True
        if notes:
            values[track.approval_notes_field] = notes

    elif decision is DecisionType.rejected:
        if not notes:
            raise WorkflowError("Please provide a reason for rejection")
        values[track.status_field] = ClaimStatus.rejected.value
        # Sets the main status too so the insurance portal sees it as rejected
        values["status"] = ClaimStatus.rejected.value
        values[track.approval_flag_field] = False
        values[track.approval_date_field] = None
        values["rejected_at"] = now
        values[track.approval_notes_field] = notes

    else:
        values["status"] = ClaimStatus.under_review.value
        if notes:
            values[track.approval_notes_field] = notes

    return values


def approval_clear_update(claim: Any, track: ReviewerTrack) -> Dict[str, Any]:
    """Columns to write when a document of this track stops being verified."""
    values: Dict[str, Any] = {
        track.approval_flag_field: False,
        track.approval_date_field: None,
    }
    if getattr(claim, track.status_field, None) == ClaimStatus.approved.value:
        values[track.status_field] = track.revert_status
    return values


def revert_update(track: ReviewerTrack) -> Dict[str, Any]:
    return {
        track.status_field: track.revert_status,
        track.approval_flag_field: False,
        track.approval_date_field: None,
    }


def find_claims_to_revert(claims: Iterable[Any], track: ReviewerTrack) -> List[str]:
    """Ids of claims flagged approved while a relevant document is still unverified."""
    return [
        claim.id
        for claim in claims
        if is_flagged_approved(claim, track) and has_unverified(claim.documents or [], track)
    ]


def is_auto_approved(claim: Any, track: ReviewerTrack) -> bool:
    """
    True when the approval was set by the platform rather than through Approve.

    Only the car track is guarded: the platform may flip the flag once every
    document is verified, but the global status is still in progress.
    """
    if track is not CAR_COMPANY:
        return False
    flagged = claim.is_approved_by_car_company is True or claim.car_company_status == ReviewerStatus.approved.value
    global_status = (claim.status or "").lower()
    return flagged and global_status not in (ClaimStatus.submitted.value, ClaimStatus.approved.value)


def migrate_reviewer_status(claim: Any, track: ReviewerTrack) -> Optional[Dict[str, Any]]:
    """
    Derive the reviewer status column from the legacy approval flag.

    Returns the update for this claim, or None when it is already consistent.
    """
    if track is CAR_COMPANY:
        if claim.car_company_status not in (None, ReviewerStatus.pending.value):
            return None
        new_status = ReviewerStatus.pending.value
        if claim.is_approved_by_car_company is True:
            new_status = ReviewerStatus.approved.value
        elif claim.is_approved_by_car_company is False and claim.car_company_approval_notes:
            new_status = ReviewerStatus.rejected.value
        if new_status == claim.car_company_status:
            return None
        return {"car_company_status": new_status}

    if claim.status == ClaimStatus.approved.value and claim.is_approved_by_insurance_company is not True:
        return {"is_approved_by_insurance_company": True}
    return None


def build_notification(
    track: ReviewerTrack,
    decision: DecisionType,
    claim_number: str,
    notes: Optional[str] = None,
) -> Notification:
    """Title, body and status tag sent to the claim owner after a decision."""
    decision = DecisionType(decision)
    if decision is DecisionType.approved:
        body = f"Your claim {claim_number} has been approved by the {track.label}."
        if notes:
            body += f"\n\nNotes: {notes}"
        return Notification("Claim Approved", body, "approved")
    if decision is DecisionType.rejected:
        if notes:
            body = f"Your claim {claim_number} has been rejected by the {track.label}. \n\nReason: \n{notes}"
        else:
            body = (
                f"Your claim {claim_number} has been rejected by the {track.label}. "
                "Please contact support for details."
            )
        return Notification("Claim Rejected", body, "rejected")
    return Notification(
        "Claim Under Review",
        f"Your claim {claim_number} is marked as Under Review by the {track.label}. We will get back to you soon.",
        "review",
    )
