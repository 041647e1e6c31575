"""
Document workflow endpoints.

    POST /api/demandes/{id}/generate-document   unsigned draft
    POST /api/demandes/{id}/validate-document   signed, validated artifact
    GET  /api/demandes/{id}/download-document   current artifact (PDF)
    GET  /api/demandes/{id}/wallet-pass         identity card wallet pass
    GET  /api/demandes/to-validate              bourgmestre validation queue
    GET  /api/demandes/validated-documents      caller's validated documents

Routes only translate between HTTP and the lifecycle manager; every
workflow rule lives in the manager.
"""

import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException, Path, status
from fastapi.responses import Response

from macommune.api.deps import get_lifecycle, get_principal
from macommune.api.errors import to_http_exception
from macommune.core.errors import DocumentWorkflowError
from macommune.schemas.demande import ArtifactRef, Principal, RequestSummary
from macommune.schemas.wallet import WalletPass
from macommune.services.lifecycle import RequestLifecycleManager

logger = logging.getLogger("macommune.api")

router = APIRouter(prefix="/api/demandes", tags=["Documents"])

DemandeId = Annotated[int, Path(ge=1, description="Demande identifier")]
CurrentPrincipal = Annotated[Principal, Depends(get_principal)]
Lifecycle = Annotated[RequestLifecycleManager, Depends(get_lifecycle)]


# =============================================================================
# Queues
# =============================================================================

@router.get(
    "/to-validate",
    summary="Requests awaiting the bourgmestre's signature",
    response_model=List[RequestSummary],
)
async def list_to_validate(
    principal: CurrentPrincipal,
    lifecycle: Lifecycle,
) -> List[RequestSummary]:
    if not principal.is_administrative:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Accès interdit : rôle insuffisant.",
        )
    return await lifecycle.list_requests_to_validate()


@router.get(
    "/validated-documents",
    summary="The calling citizen's validated documents",
    response_model=List[RequestSummary],
)
async def list_validated_documents(
    principal: CurrentPrincipal,
    lifecycle: Lifecycle,
) -> List[RequestSummary]:
    try:
        return await lifecycle.list_validated_documents(principal)
    except DocumentWorkflowError as exc:
        raise to_http_exception(exc) from exc


# =============================================================================
# Generation / validation
# =============================================================================

@router.post(
    "/{demande_id}/generate-document",
    summary="Generate the unsigned draft of a demande",
    response_model=ArtifactRef,
)
async def generate_document(
    demande_id: DemandeId,
    principal: CurrentPrincipal,
    lifecycle: Lifecycle,
) -> ArtifactRef:
    try:
        artifact = await lifecycle.generate_draft(demande_id)
    except DocumentWorkflowError as exc:
        raise to_http_exception(exc) from exc

    logger.info(
        "draft_requested",
        extra={"request_id": demande_id, "principal_id": principal.id},
    )
    return artifact


@router.post(
    "/{demande_id}/validate-document",
    summary="Validate a demande and issue the signed document",
    response_model=ArtifactRef,
    responses={
        403: {"description": "Caller is not a registered bourgmestre"},
        409: {"description": "Demande is not awaiting validation"},
    },
)
async def validate_document(
    demande_id: DemandeId,
    principal: CurrentPrincipal,
    lifecycle: Lifecycle,
) -> ArtifactRef:
    try:
        return await lifecycle.validate_and_sign(demande_id, principal)
    except DocumentWorkflowError as exc:
        raise to_http_exception(exc) from exc


# =============================================================================
# Retrieval
# =============================================================================

@router.get(
    "/{demande_id}/download-document",
    summary="Download the current document of a demande",
    response_class=Response,
    responses={
        200: {"content": {"application/pdf": {}}, "description": "PDF artifact"},
        403: {"description": "Caller may not access this demande"},
        404: {"description": "Demande or document not found"},
    },
)
async def download_document(
    demande_id: DemandeId,
    principal: CurrentPrincipal,
    lifecycle: Lifecycle,
) -> Response:
    try:
        path, pdf_bytes = await lifecycle.fetch_artifact(demande_id, principal)
    except DocumentWorkflowError as exc:
        raise to_http_exception(exc) from exc

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{path.name}"'},
    )


@router.get(
    "/{demande_id}/wallet-pass",
    summary="Wallet pass content for an identity card",
    response_model=WalletPass,
    response_model_by_alias=True,
    responses={204: {"description": "Document type has no wallet pass"}},
)
async def wallet_pass(
    demande_id: DemandeId,
    principal: CurrentPrincipal,
    lifecycle: Lifecycle,
):
    try:
        result = await lifecycle.wallet_pass(demande_id, principal)
    except DocumentWorkflowError as exc:
        raise to_http_exception(exc) from exc

    if result is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return result
