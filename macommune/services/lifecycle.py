"""
Request lifecycle: draft generation and validation/signing.

This module orchestrates the two-phase document workflow:

    1. generate_draft     render unsigned, write, point the record at it
    2. validate_and_sign  render signed with the same token, write, and
                          transition 'en traitement' -> 'validée'

Design guarantees:
- The record never references a file that was not fully written
- A failed draft leaves document_path and verification_token both NULL
- A failed validation leaves the record untouched
- The verification token, hence the verification URL, is minted once
  and reused by every later render of the same request
- Concurrent operations on one request are serialized in-process, and
  the final status transition is a compare-and-swap in the store

Trust boundary:
- Identity is asserted by the authentication gateway (Principal).
- This module decides what a principal may do with a request.
"""

import asyncio
import logging
import weakref
from functools import partial
from pathlib import Path
from typing import List, Optional, Tuple

import anyio
from sqlalchemy.exc import SQLAlchemyError

from macommune.core.config import Settings
from macommune.core.errors import (
    Forbidden,
    NotFound,
    PersistenceFailure,
    PreconditionFailed,
    RenderingFailure,
)
from macommune.db.models import Citoyen, Demande
from macommune.db.repository import DemandeRepository
from macommune.registry.registry import resolve_document
from macommune.schemas.demande import (
    ArtifactRef,
    Principal,
    RequestStatus,
    RequestSummary,
    Role,
    VerificationResult,
)
from macommune.schemas.payloads import BirthCertificatePayload
from macommune.schemas.wallet import WalletPass
from macommune.services.artifacts import (
    ArtifactStore,
    artifact_filename,
    stamp_verification_xmp,
)
from macommune.services.rasterizer import Rasterizer
from macommune.services.renderer import (
    FALLBACK_SIGNER_LABEL,
    CitizenView,
    DocumentData,
    HtmlRenderer,
    approver_display_name,
    format_fr_date,
)
from macommune.services.sealing import DocumentSealer
from macommune.services.tokens import TokenIssuer
from macommune.services.wallet import build_wallet_pass
from macommune.utils.hashing import compute_document_hash

logger = logging.getLogger(__name__)


def _citizen_name(citizen: Optional[Citoyen]) -> Optional[str]:
    if citizen is None:
        return None
    parts = [citizen.nom, citizen.postnom, citizen.prenom]
    return " ".join(p for p in parts if p) or None


def _summary(demande: Demande) -> RequestSummary:
    return RequestSummary(
        id=demande.id,
        request_type=demande.type_demande,
        status=demande.statut,
        citizen_id=demande.citoyen_id,
        citizen_name=_citizen_name(demande.citoyen),
        agent_id=demande.agent_id,
        document_ref=demande.document_path,
        created_at=demande.created_at,
        updated_at=demande.updated_at,
    )


class RequestLifecycleManager:
    """
    Drives a demande from draft to validated, signed artifact.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        repository: DemandeRepository,
        renderer: HtmlRenderer,
        token_issuer: TokenIssuer,
        rasterizer: Rasterizer,
        artifact_store: ArtifactStore,
        sealer: DocumentSealer,
    ) -> None:
        self._signer_policy = settings.signer_policy
        self._repository = repository
        self._renderer = renderer
        self._tokens = token_issuer
        self._rasterizer = rasterizer
        self._artifacts = artifact_store
        self._sealer = sealer
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, request_id: int) -> asyncio.Lock:
        lock = self._locks.get(request_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[request_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Draft generation
    # ------------------------------------------------------------------

    async def generate_draft(self, request_id: int) -> ArtifactRef:
        """
        Render the unsigned draft of a demande and record it.

        Raises:
            NotFound:
                If the demande does not exist.
            RenderingFailure:
                If rendering, rasterization or the write failed. The
                artifact reference has been reset to NULL.
            PersistenceFailure:
                If the file was written but the record could not be
                updated.
        """
        async with self._lock_for(request_id):
            demande = await self._repository.get_for_rendering(request_id)
            if demande is None:
                raise NotFound(f"Demande {request_id} not found.")

            token = demande.verification_token or self._tokens.mint_token()
            filename = artifact_filename(demande.type_demande, demande.id, token)

            try:
                verification_url = self._tokens.verification_url(token)
                qr_code = self._tokens.qr_code_data_uri(verification_url)
                data = await self._document_data(demande)
                html = self._renderer.render(
                    data,
                    mode="draft",
                    verification_url=verification_url,
                    qr_code=qr_code,
                )
                pdf_bytes = await self._rasterizer.render_pdf(html)
                await anyio.to_thread.run_sync(
                    partial(
                        self._artifacts.write,
                        filename,
                        pdf_bytes,
                        request_id=demande.id,
                        token=token,
                        verification_url=verification_url,
                    )
                )
            except Exception as exc:
                logger.exception(
                    "draft_generation_failed",
                    extra={"request_id": request_id},
                )
                await self._reset_artifact(request_id)
                if isinstance(exc, RenderingFailure):
                    raise
                raise RenderingFailure(
                    f"Draft generation failed for demande {request_id}: {exc}"
                ) from exc

            try:
                await self._repository.set_artifact(
                    demande.id,
                    document_path=filename,
                    verification_token=token,
                )
            except SQLAlchemyError as exc:
                logger.error(
                    "draft_persistence_failed",
                    extra={
                        "request_id": request_id,
                        "artifact_filename": filename,
                        "verification_token": token,
                    },
                )
                await self._reset_artifact(request_id)
                raise PersistenceFailure(
                    f"Draft for demande {request_id} was written but not recorded.",
                    request_id=request_id,
                    filename=filename,
                    verification_token=token,
                ) from exc

            logger.info(
                "draft_generated",
                extra={"request_id": request_id, "artifact_filename": filename},
            )
            return ArtifactRef(
                request_id=demande.id,
                document_ref=filename,
                verification_url=verification_url,
                status=demande.statut,
                signed=False,
            )

    async def _reset_artifact(self, request_id: int) -> None:
        # Best effort: the caller re-raises the original failure.
        try:
            await self._repository.clear_artifact(request_id)
        except SQLAlchemyError:
            logger.exception(
                "artifact_reset_failed",
                extra={"request_id": request_id},
            )

    # ------------------------------------------------------------------
    # Validation / signing
    # ------------------------------------------------------------------

    async def validate_and_sign(
        self,
        request_id: int,
        principal: Optional[Principal],
    ) -> ArtifactRef:
        """
        Render the signed document and mark the demande as validated.

        Raises:
            NotFound:
                If the demande does not exist.
            Forbidden:
                If the signer cannot be resolved under the strict policy.
                Checked before the demande's state.
            PreconditionFailed:
                If the demande is not 'en traitement', has no draft, or
                was validated concurrently.
            RenderingFailure:
                If the signed artifact could not be produced. The record
                is unchanged.
            PersistenceFailure:
                If the signed file was written but the record could not
                be updated.
        """
        async with self._lock_for(request_id):
            demande = await self._repository.get_for_rendering(request_id)
            if demande is None:
                raise NotFound(f"Demande {request_id} not found.")

            signer_name = await self._resolve_signer(principal)

            if (
                demande.statut != RequestStatus.IN_PROCESSING
                or not demande.document_path
                or not demande.verification_token
            ):
                raise PreconditionFailed(
                    f"Demande {request_id} is not ready for validation "
                    f"(status '{demande.statut.value}', draft "
                    f"{'present' if demande.document_path else 'missing'})."
                )

            token = demande.verification_token
            filename = artifact_filename(
                demande.type_demande, demande.id, token, signed=True
            )

            try:
                verification_url = self._tokens.verification_url(token)
                qr_code = self._tokens.qr_code_data_uri(verification_url)
                data = await self._document_data(demande)
                html = self._renderer.render(
                    data,
                    mode="signed",
                    verification_url=verification_url,
                    qr_code=qr_code,
                    approver_name=signer_name,
                )
                pdf_bytes = await self._rasterizer.render_pdf(html)
                stamped = await anyio.to_thread.run_sync(
                    partial(
                        stamp_verification_xmp,
                        pdf_bytes,
                        request_id=demande.id,
                        token=token,
                        verification_url=verification_url,
                    )
                )
                sealed = await self._sealer.seal(stamped, location=data.commune_name)
                await anyio.to_thread.run_sync(
                    self._artifacts.write_bytes, filename, sealed
                )
            except Exception as exc:
                logger.exception(
                    "signed_generation_failed",
                    extra={"request_id": request_id},
                )
                if isinstance(exc, RenderingFailure):
                    raise
                raise RenderingFailure(
                    f"Signed document generation failed for demande "
                    f"{request_id}: {exc}"
                ) from exc

            try:
                transitioned = await self._repository.mark_validated(
                    demande.id,
                    signed_document_path=filename,
                    verification_token=token,
                )
            except SQLAlchemyError as exc:
                logger.error(
                    "validation_persistence_failed",
                    extra={
                        "request_id": request_id,
                        "artifact_filename": filename,
                        "verification_token": token,
                    },
                )
                raise PersistenceFailure(
                    f"Signed document for demande {request_id} was written "
                    "but the demande could not be marked as validated.",
                    request_id=request_id,
                    filename=filename,
                    verification_token=token,
                ) from exc

            if not transitioned:
                logger.warning(
                    "validation_conflict",
                    extra={"request_id": request_id},
                )
                raise PreconditionFailed(
                    f"Demande {request_id} was modified concurrently; "
                    "it is no longer awaiting validation."
                )

            logger.info(
                "document_validated",
                extra={
                    "request_id": request_id,
                    "artifact_filename": filename,
                    "sealing_backend": self._sealer.backend,
                },
            )
            return ArtifactRef(
                request_id=demande.id,
                document_ref=filename,
                verification_url=verification_url,
                status=RequestStatus.VALIDATED,
                signed=True,
            )

    async def _resolve_signer(self, principal: Optional[Principal]) -> str:
        """
        Display name of the bourgmestre signing the document.

        Under the 'fallback' policy an unresolvable identity signs with
        the generic label instead of failing.
        """
        administrateur = None
        if principal is not None and principal.role == Role.ADMIN:
            administrateur = await self._repository.get_administrateur(principal.id)

        if administrateur is not None:
            return approver_display_name(administrateur.prenom, administrateur.nom)

        if self._signer_policy == "fallback":
            logger.warning(
                "signer_unresolved_using_fallback",
                extra={
                    "principal_id": principal.id if principal else None,
                    "principal_role": principal.role.value if principal else None,
                },
            )
            return FALLBACK_SIGNER_LABEL

        raise Forbidden("Only a registered bourgmestre may validate documents.")

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def fetch_artifact(
        self,
        request_id: int,
        principal: Principal,
    ) -> Tuple[Path, bytes]:
        """
        Return the current artifact of a demande.

        Raises:
            NotFound:
                If the demande or its artifact does not exist.
            Forbidden:
                Unless the principal is administrative or owns the demande.
        """
        demande = await self._repository.get(request_id)
        if demande is None:
            raise NotFound(f"Demande {request_id} not found.")

        if not principal.is_administrative and principal.id != demande.citoyen_id:
            raise Forbidden("You are not allowed to download this document.")

        if not self._artifacts.exists(demande.document_path):
            raise NotFound(f"No document on file for demande {request_id}.")

        path = self._artifacts.path_for(demande.document_path)
        pdf_bytes = await anyio.to_thread.run_sync(
            self._artifacts.read, demande.document_path
        )
        return path, pdf_bytes

    async def verify_document(self, token: str) -> VerificationResult:
        """Public lookup behind the verification URL."""
        demande = await self._repository.get_by_token(token) if token else None
        if demande is None:
            raise NotFound("Unknown verification token.")

        citizen = demande.citoyen
        document_hash = None
        if self._artifacts.exists(demande.document_path):
            document_hash = compute_document_hash(
                await anyio.to_thread.run_sync(
                    self._artifacts.read, demande.document_path
                )
            )

        validated = demande.statut == RequestStatus.VALIDATED
        return VerificationResult(
            request_id=demande.id,
            request_type=demande.type_demande,
            status=demande.statut,
            citizen_name=_citizen_name(citizen) or "N/A",
            commune=citizen.commune.nom if citizen and citizen.commune else None,
            issued_at=format_fr_date(demande.updated_at) if validated else None,
            signed=bool(demande.document_path)
            and demande.document_path.endswith("_signed.pdf"),
            document_hash=document_hash,
        )

    async def list_requests_to_validate(self) -> List[RequestSummary]:
        demandes = await self._repository.list_in_processing()
        return [_summary(d) for d in demandes]

    async def list_validated_documents(
        self,
        principal: Principal,
    ) -> List[RequestSummary]:
        if principal.role != Role.CITIZEN:
            raise Forbidden("Only citizens have a validated documents list.")
        demandes = await self._repository.list_validated_for_citizen(principal.id)
        return [_summary(d) for d in demandes]

    async def wallet_pass(
        self,
        request_id: int,
        principal: Principal,
    ) -> Optional[WalletPass]:
        """
        Wallet pass for an identity card; None for every other type.
        """
        demande = await self._repository.get_for_rendering(request_id)
        if demande is None:
            raise NotFound(f"Demande {request_id} not found.")
        if demande.citoyen is None:
            raise NotFound(f"Citizen of demande {request_id} not found.")

        if not principal.is_administrative and principal.id != demande.citoyen_id:
            raise Forbidden("You are not allowed to access this wallet pass.")

        if not resolve_document(demande.type_demande).wallet_pass_eligible:
            return None

        if not demande.verification_token:
            raise PreconditionFailed(
                f"No document has been issued for demande {request_id} yet."
            )

        return build_wallet_pass(
            demande.citoyen,
            self._tokens.verification_url(demande.verification_token),
        )

    # ------------------------------------------------------------------
    # Render inputs
    # ------------------------------------------------------------------

    async def _document_data(self, demande: Demande) -> DocumentData:
        document = resolve_document(demande.type_demande)
        payload = document.parse_payload(demande.donnees_json)

        citizen = demande.citoyen
        commune = (citizen.commune if citizen else None) or demande.commune
        province = commune.province if commune is not None else None

        birth_commune_name = None
        birth_province_name = None
        if isinstance(payload, BirthCertificatePayload):
            if payload.commune_naissance_enfant_id is not None:
                birth_commune = await self._repository.get_commune(
                    payload.commune_naissance_enfant_id
                )
                birth_commune_name = birth_commune.nom if birth_commune else None
            if payload.province_naissance_enfant_id is not None:
                birth_province = await self._repository.get_province(
                    payload.province_naissance_enfant_id
                )
                birth_province_name = birth_province.nom if birth_province else None

        citizen_view = CitizenView()
        if citizen is not None:
            citizen_view = CitizenView(
                nom=citizen.nom,
                postnom=citizen.postnom,
                prenom=citizen.prenom,
                sexe=citizen.sexe,
                date_naissance=citizen.date_naissance,
                lieu_naissance=citizen.lieu_naissance,
                numero_unique=citizen.numero_unique,
            )

        return DocumentData(
            request_id=demande.id,
            request_type=demande.type_demande,
            payload=payload,
            citizen=citizen_view,
            commune_name=commune.nom if commune is not None else None,
            province_name=province.nom if province is not None else None,
            birth_commune_name=birth_commune_name,
            birth_province_name=birth_province_name,
        )
