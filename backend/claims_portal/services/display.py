"""
Labels and formatting shared by the portal responses.
"""

from decimal import Decimal
from typing import Any, Optional, Union


DOCUMENT_TYPE_NAMES = {
    "lto_or": "LTO Official Receipt",
    "lto_cr": "LTO Certificate of Registration",
    "drivers_license": "Driver's License",
    "owner_valid_id": "Owner Valid ID",
    "stencil_strips": "Stencil Strips",
    "damage_photos": "Damage Photos",
    "job_estimate": "Job Estimate",
    "police_report": "Police Report",
    "insurance_policy": "Insurance Policy",
    "additional_documents": "Additional Documents",
}

REJECTION_REASON_LABELS = {
    "document_illegible": "Document is illegible or unclear",
    "document_expired": "Document is expired",
    "document_incomplete": "Document is incomplete",
    "document_forged": "Document appears to be forged",
    "document_wrong_type": "Wrong document type submitted",
    "document_mismatch": "Document information doesn't match claim",
}

ACTION_LABELS = {
    "claim_created": "Claim Created",
    "claim_submitted": "Claim Submitted",
    "claim_updated": "Claim Updated",
    "claim_approved": "Claim Approved",
    "claim_rejected": "Claim Rejected",
    "document_uploaded": "Document Uploaded",
    "document_verified": "Document Verified",
    "document_rejected": "Document Rejected",
    "car_company_approval": "Car Co. Approval",
    "car_company_rejection": "Car Co. Rejection",
    "insurance_company_approval": "Insurance Approval",
    "insurance_company_rejection": "Insurance Rejection",
    "status_changed": "Status Changed",
    "notes_added": "Notes Added",
    "other": "Other Action",
}

STATUS_LABELS = {
    "success": "Success",
    "failure": "Failed",
    "pending": "Pending",
    "cancelled": "Cancelled",
    "approved": "Approved",
    "rejected": "Rejected",
    "under_review": "Under Review",
}

_CLAIM_STATUS_LABELS = {
    "under_review": "In Review",
    "pending_documents": "Pending",
    "submitted": "Submitted",
    "draft": "Draft",
    "approved": "Approved",
    "rejected": "Rejected",
    "appealed": "Appealed",
}


def title_case(value: str) -> str:
    words = value.replace("-", " ").replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def format_status(status: Optional[str]) -> str:
    """Status pill label for a claim or reviewer status."""
    if not status:
        return "Unknown"
    return _CLAIM_STATUS_LABELS.get(status.lower(), title_case(status))


def document_type_name(doc_type: Optional[str]) -> str:
    if not doc_type:
        return "Document"
    return DOCUMENT_TYPE_NAMES.get(doc_type, title_case(doc_type))


def rejection_reason_label(note: Optional[str]) -> Optional[str]:
    """Readable label for a stored rejection note; free-text notes pass through."""
    if not note:
        return None
    return REJECTION_REASON_LABELS.get(note, note)


def action_label(action: Optional[str]) -> str:
    return ACTION_LABELS.get(action or "other", title_case(action or "other"))


def status_label(status: Optional[str]) -> str:
    if not status:
        return "Unknown"
    return STATUS_LABELS.get(status, title_case(status))


def format_currency(value: Union[int, float, Decimal, str, None]) -> str:
    """Format an amount as Philippine pesos, e.g. ``₱12,500.00``."""
    if value is None or value == "":
        return "₱0.00"
    try:
        amount = Decimal(str(value))
    except ArithmeticError:
        return "₱0.00"
    sign = "-" if amount < 0 else ""
    return f"{sign}₱{abs(amount):,.2f}"


def vehicle_summary(claim: Any) -> str:
    parts = [claim.vehicle_year, claim.vehicle_make, claim.vehicle_model]
    summary = " ".join(str(part) for part in parts if part)
    if claim.vehicle_plate_number:
        summary = f"{summary} ({claim.vehicle_plate_number})" if summary else claim.vehicle_plate_number
    return summary or "Vehicle details unavailable"
