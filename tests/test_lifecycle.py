"""
Request lifecycle tests (draft generation, validation, retrieval).

Coverage:

  generate_draft
    - success points the record at the written draft, status unchanged
    - the verification token is minted once and reused
    - rendering failure resets document_path / verification_token to NULL,
      whatever the engine raised
    - QR encoding failure aborts before anything is written
    - store failure after the write -> PersistenceFailure, logged for
      reconciliation
    - unknown demande -> NotFound

  validate_and_sign
    - demande 42 end to end: signed filename, approver name, 'validée'
    - demande 1 ('soumise') -> PreconditionFailed, no mutation
    - strict vs fallback signer policy
    - concurrent validation: exactly one winner
    - the signer is authorized before the demande state is checked

  fetch_artifact / verify_document / queues / wallet pass
"""

import asyncio
import logging

import pytest

from macommune.core.errors import (
    Forbidden,
    NotFound,
    PersistenceFailure,
    PreconditionFailed,
    RasterizationError,
    RenderingFailure,
    TokenIssuanceError,
)
from macommune.main import build_lifecycle
from macommune.services.artifacts import ArtifactStore
from macommune.services.lifecycle import RequestLifecycleManager
from macommune.services.renderer import HtmlRenderer
from macommune.services.sealing import DocumentSealer
from macommune.services.tokens import TokenIssuer
from macommune.schemas.demande import Principal, RequestStatus, Role
from tests.fixtures.doubles import FlakyRepository, QrFailingTokenIssuer
from tests.fixtures.rasterizers import BrokenRasterizer, FailingRasterizer, FakeRasterizer
from tests.fixtures.settings import make_settings

pytestmark = pytest.mark.anyio

BOURGMESTRE = Principal(id=7, role=Role.ADMIN)
OWNER = Principal(id=5, role=Role.CITIZEN)
OTHER_CITIZEN = Principal(id=99, role=Role.CITIZEN)


# ---------------------------------------------------------------------------
# Draft generation
# ---------------------------------------------------------------------------

async def test_generate_draft_records_artifact(lifecycle, repository, settings, rasterizer):
    ref = await lifecycle.generate_draft(42)

    demande = await repository.get(42)
    assert demande.verification_token
    assert ref.document_ref == f"acte_residence_42_{demande.verification_token}.pdf"
    assert demande.document_path == ref.document_ref
    assert demande.statut == RequestStatus.IN_PROCESSING
    assert (settings.documents_dir / ref.document_ref).is_file()
    assert ref.verification_url.endswith(f"?token={demande.verification_token}")
    assert not ref.signed

    assert len(rasterizer.rendered) == 1
    assert "Signature (Numérique)" in rasterizer.rendered[0]
    assert ref.verification_url in rasterizer.rendered[0]


async def test_regenerating_draft_reuses_token(lifecycle, repository):
    first = await lifecycle.generate_draft(42)
    second = await lifecycle.generate_draft(42)

    assert first.verification_url == second.verification_url
    assert first.document_ref == second.document_ref


async def test_draft_failure_resets_artifact(settings, database, repository):
    healthy = build_lifecycle(settings, database, FakeRasterizer())
    await healthy.generate_draft(42)

    failing = build_lifecycle(settings, database, FailingRasterizer())
    with pytest.raises(RasterizationError):
        await failing.generate_draft(42)

    demande = await repository.get(42)
    assert demande.document_path is None
    assert demande.verification_token is None
    assert demande.statut == RequestStatus.IN_PROCESSING


async def test_first_draft_failure_leaves_no_reference(settings, database, repository):
    failing = build_lifecycle(settings, database, FailingRasterizer())

    with pytest.raises(RasterizationError):
        await failing.generate_draft(43)

    demande = await repository.get(43)
    assert demande.document_path is None
    assert demande.verification_token is None
    assert not any(settings.documents_dir.glob("*.pdf"))


async def test_generate_draft_unknown_demande(lifecycle):
    with pytest.raises(NotFound):
        await lifecycle.generate_draft(4040)


async def test_birth_certificate_resolves_birth_place(lifecycle, rasterizer):
    await lifecycle.generate_draft(1)

    html = rasterizer.rendered[-1]
    assert "ACTE DE NAISSANCE" in html
    assert "Hôpital du Cinquantenaire, Lingwala, Kinshasa" in html
    assert "15/01/2024" in html


async def test_unknown_type_uses_fallback_document(lifecycle, rasterizer):
    ref = await lifecycle.generate_draft(44)

    assert ref.document_ref.startswith("acte_deces_44_")
    assert "Document Non Standard" in rasterizer.rendered[-1]


# ---------------------------------------------------------------------------
# Validation / signing
# ---------------------------------------------------------------------------

async def test_validate_end_to_end(lifecycle, repository, settings, rasterizer):
    draft = await lifecycle.generate_draft(42)
    token = (await repository.get(42)).verification_token

    signed = await lifecycle.validate_and_sign(42, BOURGMESTRE)

    assert signed.document_ref == f"acte_residence_42_{token}_signed.pdf"
    assert signed.status == RequestStatus.VALIDATED
    assert signed.signed
    assert signed.verification_url == draft.verification_url

    demande = await repository.get(42)
    assert demande.statut == RequestStatus.VALIDATED
    assert demande.document_path == signed.document_ref
    assert demande.verification_token == token
    assert (settings.documents_dir / signed.document_ref).is_file()

    assert '<p class="bourgmestre-name">Jean Kabila</p>' in rasterizer.rendered[-1]


async def test_validate_submitted_demande_is_rejected(lifecycle, repository):
    await lifecycle.generate_draft(1)
    before = await repository.get(1)

    with pytest.raises(PreconditionFailed):
        await lifecycle.validate_and_sign(1, BOURGMESTRE)

    after = await repository.get(1)
    assert after.statut == RequestStatus.SUBMITTED
    assert after.document_path == before.document_path
    assert after.verification_token == before.verification_token


async def test_validate_without_draft_is_rejected(lifecycle, rasterizer):
    with pytest.raises(PreconditionFailed):
        await lifecycle.validate_and_sign(42, BOURGMESTRE)

    assert rasterizer.rendered == []


async def test_validate_unknown_demande(lifecycle):
    with pytest.raises(NotFound):
        await lifecycle.validate_and_sign(4040, BOURGMESTRE)


async def test_validate_twice_is_rejected(lifecycle):
    await lifecycle.generate_draft(42)
    await lifecycle.validate_and_sign(42, BOURGMESTRE)

    with pytest.raises(PreconditionFailed):
        await lifecycle.validate_and_sign(42, BOURGMESTRE)


@pytest.mark.parametrize(
    "principal",
    [
        Principal(id=5, role=Role.CITIZEN),
        Principal(id=999, role=Role.ADMIN),
        Principal(id=7, role=Role.SUPER_ADMIN),
        None,
    ],
)
async def test_strict_policy_requires_registered_bourgmestre(lifecycle, repository, principal):
    await lifecycle.generate_draft(42)

    with pytest.raises(Forbidden):
        await lifecycle.validate_and_sign(42, principal)

    demande = await repository.get(42)
    assert demande.statut == RequestStatus.IN_PROCESSING
    assert not demande.document_path.endswith("_signed.pdf")


async def test_fallback_policy_signs_with_label(tmp_path, database, repository):
    rasterizer = FakeRasterizer()
    lifecycle = build_lifecycle(
        make_settings(tmp_path, signer_policy="fallback"), database, rasterizer
    )
    await lifecycle.generate_draft(42)

    ref = await lifecycle.validate_and_sign(42, Principal(id=999, role=Role.ADMIN))

    assert ref.status == RequestStatus.VALIDATED
    assert '<p class="bourgmestre-name">Le Bourgmestre</p>' in rasterizer.rendered[-1]


async def test_bourgmestre_without_names_signs_with_label(lifecycle, rasterizer):
    await lifecycle.generate_draft(42)

    await lifecycle.validate_and_sign(42, Principal(id=8, role=Role.ADMIN))

    assert '<p class="bourgmestre-name">Le Bourgmestre</p>' in rasterizer.rendered[-1]


async def test_signing_failure_leaves_record_untouched(settings, database, repository):
    await build_lifecycle(settings, database, FakeRasterizer()).generate_draft(42)
    before = await repository.get(42)

    failing = build_lifecycle(settings, database, FailingRasterizer())
    with pytest.raises(RasterizationError):
        await failing.validate_and_sign(42, BOURGMESTRE)

    after = await repository.get(42)
    assert after.statut == RequestStatus.IN_PROCESSING
    assert after.document_path == before.document_path
    assert after.verification_token == before.verification_token


async def test_concurrent_validations_have_one_winner(lifecycle, repository):
    await lifecycle.generate_draft(42)

    results = await asyncio.gather(
        lifecycle.validate_and_sign(42, BOURGMESTRE),
        lifecycle.validate_and_sign(42, BOURGMESTRE),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, PreconditionFailed)]
    assert len(successes) == 1
    assert len(conflicts) == 1
    assert (await repository.get(42)).statut == RequestStatus.VALIDATED


class _RacingRasterizer(FakeRasterizer):
    """Simulates another process validating the demande mid-render."""

    def __init__(self, repository, token: str) -> None:
        super().__init__()
        self._repository = repository
        self._token = token

    async def render_pdf(self, html: str) -> bytes:
        await self._repository.mark_validated(
            42,
            signed_document_path="acte_residence_42_other_signed.pdf",
            verification_token=self._token,
        )
        return await super().render_pdf(html)


async def test_lost_race_surfaces_as_conflict(settings, database, repository, lifecycle):
    await lifecycle.generate_draft(42)
    token = (await repository.get(42)).verification_token

    racing = build_lifecycle(settings, database, _RacingRasterizer(repository, token))
    with pytest.raises(PreconditionFailed):
        await racing.validate_and_sign(42, BOURGMESTRE)

    demande = await repository.get(42)
    assert demande.statut == RequestStatus.VALIDATED
    assert demande.document_path == "acte_residence_42_other_signed.pdf"


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

async def test_owner_and_administrators_can_fetch(lifecycle):
    await lifecycle.generate_draft(42)

    path, pdf_bytes = await lifecycle.fetch_artifact(42, OWNER)
    assert pdf_bytes.startswith(b"%PDF-")
    assert path.name.startswith("acte_residence_42_")

    _, admin_bytes = await lifecycle.fetch_artifact(
        42, Principal(id=1, role=Role.ADMIN_GENERAL)
    )
    assert admin_bytes == pdf_bytes


async def test_other_citizen_cannot_fetch(lifecycle):
    await lifecycle.generate_draft(42)

    with pytest.raises(Forbidden):
        await lifecycle.fetch_artifact(42, OTHER_CITIZEN)


async def test_fetch_without_artifact(lifecycle):
    with pytest.raises(NotFound):
        await lifecycle.fetch_artifact(42, OWNER)

    with pytest.raises(NotFound):
        await lifecycle.fetch_artifact(4040, OWNER)


async def test_fetch_with_missing_file(lifecycle, settings):
    ref = await lifecycle.generate_draft(42)
    (settings.documents_dir / ref.document_ref).unlink()

    with pytest.raises(NotFound):
        await lifecycle.fetch_artifact(42, OWNER)


async def test_verify_validated_document(lifecycle, repository):
    await lifecycle.generate_draft(42)
    await lifecycle.validate_and_sign(42, BOURGMESTRE)
    token = (await repository.get(42)).verification_token

    result = await lifecycle.verify_document(token)

    assert result.request_id == 42
    assert result.status == RequestStatus.VALIDATED
    assert result.signed
    assert result.citizen_name == "Mbala Kalonji Pierre"
    assert result.commune == "Gombe"
    assert result.issued_at is not None
    assert result.document_hash.startswith("SHA-256:")


async def test_verify_draft_document(lifecycle, repository):
    await lifecycle.generate_draft(42)
    token = (await repository.get(42)).verification_token

    result = await lifecycle.verify_document(token)

    assert result.status == RequestStatus.IN_PROCESSING
    assert not result.signed
    assert result.issued_at is None


async def test_verify_unknown_token(lifecycle):
    with pytest.raises(NotFound):
        await lifecycle.verify_document("no-such-token")


# ---------------------------------------------------------------------------
# Queues
# ---------------------------------------------------------------------------

async def test_requests_to_validate_newest_first(lifecycle):
    queue = await lifecycle.list_requests_to_validate()

    assert [s.id for s in queue] == [45, 44, 43, 42]
    assert queue[-1].citizen_name == "Mbala Kalonji Pierre"


async def test_validated_documents_for_citizen(lifecycle):
    assert await lifecycle.list_validated_documents(OWNER) == []

    await lifecycle.generate_draft(42)
    await lifecycle.validate_and_sign(42, BOURGMESTRE)

    documents = await lifecycle.list_validated_documents(OWNER)
    assert [d.id for d in documents] == [42]
    assert documents[0].document_ref.endswith("_signed.pdf")

    assert await lifecycle.list_validated_documents(OTHER_CITIZEN) == []


async def test_validated_documents_are_citizen_only(lifecycle):
    with pytest.raises(Forbidden):
        await lifecycle.list_validated_documents(BOURGMESTRE)


# ---------------------------------------------------------------------------
# Wallet pass
# ---------------------------------------------------------------------------

async def test_wallet_pass_for_identity_card(lifecycle, repository):
    ref = await lifecycle.generate_draft(43)

    wallet = await lifecycle.wallet_pass(43, OWNER)

    assert wallet.serial_number == "ID-CD-0005"
    assert wallet.organization_name == "RDC Digital"
    assert wallet.barcode.message == ref.verification_url
    assert [f.key for f in wallet.primary_fields] == ["nom", "prenom", "numero"]


async def test_wallet_pass_is_skipped_for_certificates(lifecycle):
    assert await lifecycle.wallet_pass(42, OWNER) is None


async def test_wallet_pass_requires_issued_document(lifecycle):
    with pytest.raises(PreconditionFailed):
        await lifecycle.wallet_pass(43, OWNER)


async def test_wallet_pass_access(lifecycle):
    await lifecycle.generate_draft(43)

    with pytest.raises(Forbidden):
        await lifecycle.wallet_pass(43, OTHER_CITIZEN)


async def test_wallet_pass_is_skipped_for_unknown_types(lifecycle):
    await lifecycle.generate_draft(44)

    assert await lifecycle.wallet_pass(44, OWNER) is None


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------

def _manager(settings, repository, *, rasterizer=None, token_issuer=None):
    return RequestLifecycleManager(
        settings,
        repository=repository,
        renderer=HtmlRenderer(settings),
        token_issuer=token_issuer or TokenIssuer(settings),
        rasterizer=rasterizer or FakeRasterizer(),
        artifact_store=ArtifactStore(settings),
        sealer=DocumentSealer(settings),
    )


def _record(caplog, event: str) -> logging.LogRecord:
    return next(r for r in caplog.records if r.getMessage() == event)


async def test_unexpected_engine_error_resets_draft(lifecycle, settings, database, repository):
    await lifecycle.generate_draft(42)

    broken = build_lifecycle(settings, database, BrokenRasterizer())
    with pytest.raises(RenderingFailure) as excinfo:
        await broken.generate_draft(42)

    assert isinstance(excinfo.value.__cause__, ValueError)
    demande = await repository.get(42)
    assert demande.document_path is None
    assert demande.verification_token is None


async def test_unexpected_engine_error_during_signing(lifecycle, settings, database, repository):
    await lifecycle.generate_draft(42)
    before = await repository.get(42)

    broken = build_lifecycle(settings, database, BrokenRasterizer())
    with pytest.raises(RenderingFailure) as excinfo:
        await broken.validate_and_sign(42, BOURGMESTRE)

    assert isinstance(excinfo.value.__cause__, ValueError)
    after = await repository.get(42)
    assert after.statut == RequestStatus.IN_PROCESSING
    assert after.document_path == before.document_path
    assert after.verification_token == before.verification_token


async def test_qr_failure_aborts_draft(settings, database, repository):
    rasterizer = FakeRasterizer()
    manager = _manager(
        settings,
        repository,
        rasterizer=rasterizer,
        token_issuer=QrFailingTokenIssuer(settings),
    )

    with pytest.raises(TokenIssuanceError):
        await manager.generate_draft(43)

    assert rasterizer.rendered == []
    assert not any(settings.documents_dir.glob("*.pdf"))
    demande = await repository.get(43)
    assert demande.document_path is None
    assert demande.verification_token is None


async def test_qr_failure_resets_previous_draft(lifecycle, settings, repository):
    await lifecycle.generate_draft(42)

    manager = _manager(
        settings, repository, token_issuer=QrFailingTokenIssuer(settings)
    )
    with pytest.raises(TokenIssuanceError):
        await manager.generate_draft(42)

    demande = await repository.get(42)
    assert demande.document_path is None
    assert demande.verification_token is None


async def test_qr_failure_aborts_validation(lifecycle, settings, repository):
    await lifecycle.generate_draft(42)
    before = await repository.get(42)

    manager = _manager(
        settings, repository, token_issuer=QrFailingTokenIssuer(settings)
    )
    with pytest.raises(TokenIssuanceError):
        await manager.validate_and_sign(42, BOURGMESTRE)

    after = await repository.get(42)
    assert after.statut == RequestStatus.IN_PROCESSING
    assert after.document_path == before.document_path
    assert after.verification_token == before.verification_token
    assert not any(settings.documents_dir.glob("*_signed.pdf"))


async def test_draft_persistence_failure(settings, database, caplog):
    flaky = FlakyRepository(database, fail_set_artifact=True)
    manager = _manager(settings, flaky)

    with caplog.at_level(logging.ERROR, logger="macommune.services.lifecycle"):
        with pytest.raises(PersistenceFailure) as excinfo:
            await manager.generate_draft(42)

    failure = excinfo.value
    assert failure.request_id == 42
    assert failure.filename == f"acte_residence_42_{failure.verification_token}.pdf"
    assert (settings.documents_dir / failure.filename).is_file()

    record = _record(caplog, "draft_persistence_failed")
    assert record.request_id == 42
    assert record.artifact_filename == failure.filename
    assert record.verification_token == failure.verification_token

    assert flaky.cleared == [42]
    demande = await flaky.get(42)
    assert demande.document_path is None
    assert demande.verification_token is None


async def test_draft_reset_failure_keeps_original_error(settings, database, caplog):
    flaky = FlakyRepository(database, fail_set_artifact=True, fail_clear_artifact=True)
    manager = _manager(settings, flaky)

    with caplog.at_level(logging.ERROR, logger="macommune.services.lifecycle"):
        with pytest.raises(PersistenceFailure):
            await manager.generate_draft(42)

    assert flaky.cleared == [42]
    assert _record(caplog, "artifact_reset_failed").request_id == 42


async def test_validation_persistence_failure(lifecycle, settings, database, caplog):
    await lifecycle.generate_draft(42)
    flaky = FlakyRepository(database, fail_mark_validated=True)
    before = await flaky.get(42)

    with caplog.at_level(logging.ERROR, logger="macommune.services.lifecycle"):
        with pytest.raises(PersistenceFailure) as excinfo:
            await _manager(settings, flaky).validate_and_sign(42, BOURGMESTRE)

    failure = excinfo.value
    token = before.verification_token
    assert failure.request_id == 42
    assert failure.verification_token == token
    assert failure.filename == f"acte_residence_42_{token}_signed.pdf"
    assert (settings.documents_dir / failure.filename).is_file()

    record = _record(caplog, "validation_persistence_failed")
    assert record.artifact_filename == failure.filename
    assert record.verification_token == token

    after = await flaky.get(42)
    assert after.statut == RequestStatus.IN_PROCESSING
    assert after.document_path == before.document_path
    assert flaky.cleared == []


async def test_citizen_is_refused_before_state_check(lifecycle, rasterizer):
    with pytest.raises(Forbidden):
        await lifecycle.validate_and_sign(1, OWNER)

    assert rasterizer.rendered == []
