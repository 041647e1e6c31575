"""
Sealing of validated documents.

Stable abstraction boundary:
- The lifecycle manager does not know or care HOW sealing happens
- Only that sealed PDF bytes come back

SEALING BACKENDS (sealing_backend):

    none    the signed artifact is stored as rendered
    local   PAdES-B signature with pyHanko from a PKCS#12 bundle
    http    the PDF is posted to an external signing service
"""

import logging
import uuid
from functools import partial
from typing import Optional

import anyio
import httpx
from pyhanko.sign import signers

from macommune.core.config import Settings
from macommune.core.errors import SealingError
from macommune.services.pades import load_pkcs12_signer, seal_pdf_pades_b

logger = logging.getLogger(__name__)

HTTP_SEALING_TIMEOUT_SECONDS = 30.0


class DocumentSealer:
    """Applies the configured sealing backend to signed artifacts."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._backend = settings.sealing_backend
        self._reason = settings.sealing_reason
        self._p12_path = settings.sealing_p12_path
        self._p12_password = (
            settings.sealing_p12_password.get_secret_value()
            if settings.sealing_p12_password
            else None
        )
        self._http_url = (
            str(settings.sealing_http_url) if settings.sealing_http_url else None
        )
        self._http_client = http_client
        self._signer: Optional[signers.SimpleSigner] = None

    @property
    def backend(self) -> str:
        return self._backend

    async def seal(self, pdf_bytes: bytes, *, location: Optional[str] = None) -> bytes:
        """
        Seal a signed artifact using the configured backend.

        Raises:
            SealingError:
                If the backend fails. The caller must not store the
                unsealed document in its place.
        """
        if self._backend == "none":
            return pdf_bytes
        if self._backend == "local":
            return await self._seal_local(pdf_bytes, location=location)
        if self._backend == "http":
            return await self._seal_http(pdf_bytes)
        raise SealingError(f"Unknown sealing backend '{self._backend}'")

    async def _seal_local(self, pdf_bytes: bytes, *, location: Optional[str]) -> bytes:
        # Keystore loading and pyHanko signing are synchronous and blocking.
        if self._signer is None:
            self._signer = await anyio.to_thread.run_sync(
                load_pkcs12_signer, self._p12_path, self._p12_password
            )

        return await anyio.to_thread.run_sync(
            partial(
                seal_pdf_pades_b,
                pdf_bytes,
                signer=self._signer,
                reason=self._reason,
                location=location,
            )
        )

    async def _seal_http(self, pdf_bytes: bytes) -> bytes:
        """
        Contract:
        - input: rendered, stamped PDF
        - output: incrementally signed PDF
        """
        correlation_id = f"macommune-{uuid.uuid4()}"

        request_kwargs = {
            "headers": {"X-Correlation-ID": correlation_id},
            "files": {"file": ("document.pdf", pdf_bytes, "application/pdf")},
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.post(self._http_url, **request_kwargs)
            else:
                async with httpx.AsyncClient(
                    timeout=HTTP_SEALING_TIMEOUT_SECONDS,
                    follow_redirects=False,
                ) as client:
                    response = await client.post(self._http_url, **request_kwargs)
        except httpx.HTTPError as exc:
            raise SealingError(
                f"Failed to call signing service "
                f"(correlation_id={correlation_id}): {exc}"
            ) from exc

        if response.status_code != 200:
            raise SealingError(
                "Signing service error "
                f"(status={response.status_code}, "
                f"correlation_id={correlation_id}): "
                f"{response.text}"
            )

        content_type = response.headers.get("Content-Type", "")
        if "application/pdf" not in content_type:
            raise SealingError(
                "Signing service returned non-PDF response "
                f"(content_type={content_type}, "
                f"correlation_id={correlation_id})"
            )

        if not response.content:
            raise SealingError(
                "Signing service returned empty response "
                f"(correlation_id={correlation_id})"
            )

        logger.info(
            "document_sealed",
            extra={
                "correlation_id": correlation_id,
                "signer_backend": response.headers.get("X-Signer-Backend"),
                "signature_standard": response.headers.get("X-Signature-Standard"),
            },
        )
        return response.content
