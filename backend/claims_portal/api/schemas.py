"""
Pydantic schemas for API requests and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from claims_portal.models import DecisionType


# ============================================================================
# Config Schemas
# ============================================================================
class BackendConfigData(BaseModel):
    url: str
    anonKey: str


class BackendConfigResponse(BaseModel):
    success: bool = True
    data: BackendConfigData


# ============================================================================
# Auth Schemas
# ============================================================================
class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class LoginResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    user_id: str
    email: Optional[str] = None
    role: str
    redirect: str


class SessionResponse(BaseModel):
    authenticated: bool
    role: Optional[str] = None
    redirect: Optional[str] = None


class PasswordResetRequest(BaseModel):
    email: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


# ============================================================================
# Admin Schemas
# ============================================================================
class SignupRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = None
    role: Optional[str] = None


class SignupResponse(BaseModel):
    user_id: Optional[str] = None
    email: str
    role: str
    portal_role: str
    confirmed: bool
    message: str


# ============================================================================
# Claims Schemas
# ============================================================================
class DocumentCountsSchema(BaseModel):
    total: int = 0
    verified: int = 0
    rejected: int = 0
    pending: int = 0


class DecisionControlsSchema(BaseModel):
    approve_enabled: bool
    reject_enabled: bool
    view_only: bool


class OwnerSchema(BaseModel):
    id: Optional[str] = None
    name: str = "Unknown"
    email: Optional[str] = None
    phone: Optional[str] = None


class ClaimSummary(BaseModel):
    id: str
    claim_number: Optional[str] = None
    status: Optional[str] = None
    status_label: str
    reviewer_status: str
    reviewer_status_label: str
    is_approved: bool
    owner: OwnerSchema
    vehicle: str
    estimated_damage_cost: str
    documents: DocumentCountsSchema
    ready_for_approval: bool
    view_only: bool
    created_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None


class ClaimListResponse(BaseModel):
    claims: List[ClaimSummary]
    total: int


class DocumentSchema(BaseModel):
    id: str
    type: Optional[str] = None
    type_name: str
    file_name: Optional[str] = None
    file_size: str
    preview: str
    is_primary: bool
    state: str
    verified: bool
    verification_date: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    rejection_label: Optional[str] = None
    verified_by_car_company: bool
    created_at: Optional[datetime] = None


class RejectedDocumentSchema(BaseModel):
    document_id: str
    type_name: str
    reason: Optional[str] = None


class ClaimDetailResponse(BaseModel):
    claim: ClaimSummary
    approval_notes: Optional[str] = None
    approval_date: Optional[datetime] = None
    documents: List[DocumentSchema]
    rejected_documents: List[RejectedDocumentSchema]
    counts: DocumentCountsSchema
    controls: DecisionControlsSchema


class DecisionRequest(BaseModel):
    decision: DecisionType
    notes: Optional[str] = Field(default=None, description="Required when rejecting")


class DecisionResponse(BaseModel):
    claim: ClaimSummary
    counts: DocumentCountsSchema
    controls: DecisionControlsSchema


class VerifyDocumentRequest(BaseModel):
    verified: bool = True


class RejectDocumentRequest(BaseModel):
    reason: Optional[str] = None
    other_text: Optional[str] = None


class DocumentActionResponse(BaseModel):
    document: DocumentSchema
    next_document_id: Optional[str] = None
    counts: DocumentCountsSchema
    controls: DecisionControlsSchema


class DocumentUrlResponse(BaseModel):
    document_id: str
    url: Optional[str] = None
    preview: str
    content_url: str
    prefer_download: bool


# ============================================================================
# Audit Log Schemas
# ============================================================================
class AuditLogEntry(BaseModel):
    id: str
    timestamp: Optional[datetime] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_role: Optional[str] = None
    user_email: Optional[str] = None
    claim_id: Optional[str] = None
    claim_number: Optional[str] = None
    action: Optional[str] = None
    action_label: str
    action_description: Optional[str] = None
    outcome: Optional[str] = None
    status: Optional[str] = None
    status_label: str


class AuditLogDetail(AuditLogEntry):
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AuditLogListResponse(BaseModel):
    logs: List[AuditLogEntry]
    total: int
