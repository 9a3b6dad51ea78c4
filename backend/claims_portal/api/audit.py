"""
Read-only audit log endpoints.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from claims_portal.api import schemas
from claims_portal.api.deps import CurrentUser, Portal, get_claim_repository, require_role
from claims_portal.core.exceptions import NotFoundError
from claims_portal.models import AuditLog
from claims_portal.repositories import ClaimRepository
from claims_portal.repositories.claim_repository import AUDIT_LOG_LIMIT
from claims_portal.services.display import action_label, status_label

logger = logging.getLogger(__name__)


def audit_entry(log: AuditLog) -> Dict[str, Any]:
    user = log.user
    return {
        "id": log.id,
        "timestamp": log.timestamp or log.created_at,
        "user_id": log.user_id,
        "user_name": log.user_name or (user.name if user else None),
        "user_role": log.user_role,
        "user_email": user.email if user else None,
        "claim_id": log.claim_id,
        "claim_number": log.claim_number,
        "action": log.action,
        "action_label": action_label(log.action),
        "action_description": log.action_description,
        "outcome": log.outcome,
        "status": log.status,
        "status_label": status_label(log.status or log.outcome),
    }


def create_audit_router(portal: Portal) -> APIRouter:
    router = APIRouter()
    reviewer = require_role(portal.role)

    @router.get("/audit-logs", response_model=schemas.AuditLogListResponse)
    async def list_audit_logs(
        action: Optional[str] = Query(default=None),
        outcome: Optional[str] = Query(default=None),
        search: Optional[str] = Query(default=None),
        user: CurrentUser = Depends(reviewer),
        repository: ClaimRepository = Depends(get_claim_repository),
    ):
        """
        Newest audit entries first, filtered by action, outcome and search text.
        """
        logs = await repository.list_audit_logs(
            action=action if action and action != "all" else None,
            outcome=outcome if outcome and outcome != "all" else None,
            search=search,
            limit=AUDIT_LOG_LIMIT,
        )
        entries = [audit_entry(log) for log in logs]
        return schemas.AuditLogListResponse(logs=entries, total=len(entries))

    @router.get("/audit-logs/{log_id}", response_model=schemas.AuditLogDetail)
    async def get_audit_log(
        log_id: str,
        user: CurrentUser = Depends(reviewer),
        repository: ClaimRepository = Depends(get_claim_repository),
    ):
        log = await repository.get_audit_log(log_id)
        if log is None:
            raise NotFoundError("Audit log entry not found", detail=log_id)

        return {
            **audit_entry(log),
            "ip_address": log.ip_address,
            "user_agent": log.user_agent,
            "metadata": log.log_metadata or {},
        }

    return router
