"""
Review portal endpoints, mounted once per reviewer.

- GET  /claims                                   - Claim list with counters
- GET  /claims/{claim_id}                        - Claim detail and documents
- POST /claims/{claim_id}/decision               - Approve, reject or mark under review
- POST /claims/{claim_id}/documents/{doc}/verify - Verify or unverify a document
- POST /claims/{claim_id}/documents/{doc}/reject - Reject a document with a reason
- GET  /documents/{doc}/url                      - Viewable URL for a document
- GET  /documents/{doc}/content                  - Document bytes from storage
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from claims_portal.api import schemas
from claims_portal.api.deps import (
    CurrentUser,
    Portal,
    get_claim_repository,
    get_document_locator,
    portal_service_dependency,
    require_role,
)
from claims_portal.core.config import settings
from claims_portal.core.exceptions import NotFoundError
from claims_portal.repositories import ClaimRepository
from claims_portal.services.claim_service import PortalClaimService
from claims_portal.services.storage import DocumentLocator, guess_media_type, preview_kind

logger = logging.getLogger(__name__)


def create_portal_router(portal: Portal) -> APIRouter:
    """Build the claim review router for one portal."""
    router = APIRouter()
    reviewer = require_role(portal.role)
    get_service = portal_service_dependency(portal)

    @router.get("/claims", response_model=schemas.ClaimListResponse)
    async def list_claims(
        search: Optional[str] = Query(default=None),
        status: Optional[str] = Query(default=None),
        user: CurrentUser = Depends(reviewer),
        service: PortalClaimService = Depends(get_service),
    ):
        """
        List claims for review, filtered by search text and reviewer status.
        """
        claims = await service.load_claims(search=search, status=status)
        return schemas.ClaimListResponse(claims=claims, total=len(claims))

    @router.get("/claims/{claim_id}", response_model=schemas.ClaimDetailResponse)
    async def get_claim(
        claim_id: str,
        user: CurrentUser = Depends(reviewer),
        service: PortalClaimService = Depends(get_service),
    ):
        return await service.load_claim_detail(claim_id)

    @router.post("/claims/{claim_id}/decision", response_model=schemas.DecisionResponse)
    async def decide_claim(
        claim_id: str,
        payload: schemas.DecisionRequest,
        user: CurrentUser = Depends(reviewer),
        service: PortalClaimService = Depends(get_service),
    ):
        """
        Record the reviewer's decision on a claim and notify its owner.
        """
        return await service.decide(claim_id, payload.decision, payload.notes)

    @router.post(
        "/claims/{claim_id}/documents/{document_id}/verify",
        response_model=schemas.DocumentActionResponse,
    )
    async def verify_document(
        claim_id: str,
        document_id: str,
        payload: schemas.VerifyDocumentRequest,
        user: CurrentUser = Depends(reviewer),
        service: PortalClaimService = Depends(get_service),
    ):
        return await service.verify_document(claim_id, document_id, user.id, verified=payload.verified)

    @router.post(
        "/claims/{claim_id}/documents/{document_id}/reject",
        response_model=schemas.DocumentActionResponse,
    )
    async def reject_document(
        claim_id: str,
        document_id: str,
        payload: schemas.RejectDocumentRequest,
        user: CurrentUser = Depends(reviewer),
        service: PortalClaimService = Depends(get_service),
    ):
        return await service.reject_document(
            claim_id,
            document_id,
            payload.reason,
            payload.other_text,
            actor_id=user.id,
        )

    @router.get("/documents/{document_id}/url", response_model=schemas.DocumentUrlResponse)
    async def get_document_url(
        document_id: str,
        expires_in: int = Query(default=settings.signed_url_expiry_seconds, ge=60, le=604800),
        force_signed: bool = Query(default=False),
        user: CurrentUser = Depends(reviewer),
        repository: ClaimRepository = Depends(get_claim_repository),
        locator: DocumentLocator = Depends(get_document_locator),
    ):
        """
        Resolve a URL the reviewer can open; signed when the bucket is private.
        """
        doc = await repository.get_document(document_id)
        if doc is None:
            raise NotFoundError("Document not found", detail=document_id)

        url = await locator.get_document_url(doc, expires_in=expires_in, force_signed=force_signed)
        return schemas.DocumentUrlResponse(
            document_id=doc.id,
            url=url,
            preview=preview_kind(doc.file_name),
            content_url=f"{settings.api_prefix}/{portal.slug}/documents/{doc.id}/content",
            prefer_download=settings.prefer_storage_download,
        )

    @router.get("/documents/{document_id}/content")
    async def get_document_content(
        document_id: str,
        user: CurrentUser = Depends(reviewer),
        repository: ClaimRepository = Depends(get_claim_repository),
        locator: DocumentLocator = Depends(get_document_locator),
    ):
        """
        Stream a document straight from storage.
        """
        doc = await repository.get_document(document_id)
        if doc is None:
            raise NotFoundError("Document not found", detail=document_id)

        content = await locator.download(doc)
        file_name = doc.file_name or f"{doc.id}"
        return Response(
            content=content,
            media_type=guess_media_type(file_name),
            headers={"Content-Disposition": f'inline; filename="{file_name}"'},
        )

    return router
