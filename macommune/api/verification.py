"""
Public verification endpoint encoded in every document's QR code.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from macommune.api.deps import get_lifecycle
from macommune.api.errors import to_http_exception
from macommune.core.errors import DocumentWorkflowError
from macommune.schemas.demande import VerificationResult
from macommune.services.lifecycle import RequestLifecycleManager

router = APIRouter(tags=["Verification"])


@router.get(
    "/verify-document",
    summary="Check the authenticity of an issued document",
    response_model=VerificationResult,
)
async def verify_document(
    token: Annotated[str, Query(min_length=1, max_length=64)],
    lifecycle: Annotated[RequestLifecycleManager, Depends(get_lifecycle)],
) -> VerificationResult:
    try:
        return await lifecycle.verify_document(token)
    except DocumentWorkflowError as exc:
        raise to_http_exception(exc) from exc
