"""
Document template registry.

This module defines the set of civic documents the engine can render.
Each entry explicitly binds together:

- the request type (slug) stored on the demande
- the payload schema for that type
- the HTML Jinja template used for rendering
- the layout family (full-page letter or compact card)
- a human-readable title
- whether an issued document has a wallet pass

Request types without an entry resolve to FALLBACK_DOCUMENT, which
renders a minimal placeholder and never fails.
"""

import json
import logging
from typing import Any, Dict, Literal, Set, Type

from pydantic import BaseModel, ConfigDict, ValidationError

from macommune.schemas.demande import RequestType
from macommune.schemas.payloads import (
    BirthCertificatePayload,
    IdentityCardPayload,
    MarriageCertificatePayload,
    ResidencyCertificatePayload,
    UnsupportedPayload,
)

logger = logging.getLogger(__name__)


class DocumentTemplate(BaseModel):
    """
    Declarative description of a civic document template.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    slug: str
    payload_schema: Type[BaseModel]
    template_path: str
    layout: Literal["letter", "card", "fallback"]
    title: str
    wallet_pass_eligible: bool = False

    def parse_payload(self, raw: Any) -> BaseModel:
        """
        Build the typed payload for this document from the stored data.

        Accepts a mapping or its JSON text. Fields that fail validation are
        logged and dropped; every other supplied field is kept, and the
        dropped ones render as "N/A".
        """
        data = _load_mapping(raw)

        if self.payload_schema is UnsupportedPayload:
            return UnsupportedPayload(raw=data)

        try:
            return self.payload_schema.model_validate(data)
        except ValidationError as exc:
            invalid = self._invalid_keys(exc)
            logger.warning(
                "payload_validation_failed",
                extra={
                    "request_type": self.slug,
                    "invalid_fields": sorted(invalid),
                },
            )

        kept = {k: v for k, v in data.items() if k not in invalid}
        try:
            return self.payload_schema.model_validate(kept)
        except ValidationError:
            logger.warning(
                "payload_discarded",
                extra={"request_type": self.slug},
            )
            return self.payload_schema()

    def _invalid_keys(self, exc: ValidationError) -> Set[str]:
        # Errors report the alias; drop the snake_case spelling as well.
        locs = {str(err["loc"][0]) for err in exc.errors() if err["loc"]}
        keys = set(locs)
        for name, field in self.payload_schema.model_fields.items():
            if name in locs or field.alias in locs:
                keys.add(name)
                if field.alias:
                    keys.add(field.alias)
        return keys


def _load_mapping(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw or "{}")
        except ValueError:
            logger.warning("payload_not_json")
            return {}
    if not isinstance(raw, dict):
        return {}
    return dict(raw)


DOCUMENT_REGISTRY: Dict[RequestType, DocumentTemplate] = {
    RequestType.BIRTH_CERTIFICATE: DocumentTemplate(
        slug=RequestType.BIRTH_CERTIFICATE.value,
        payload_schema=BirthCertificatePayload,
        template_path="acte_naissance.html.jinja",
        layout="letter",
        title="ACTE DE NAISSANCE",
    ),
    RequestType.MARRIAGE_CERTIFICATE: DocumentTemplate(
        slug=RequestType.MARRIAGE_CERTIFICATE.value,
        payload_schema=MarriageCertificatePayload,
        template_path="acte_mariage.html.jinja",
        layout="letter",
        title="ACTE DE MARIAGE",
    ),
    RequestType.RESIDENCY_CERTIFICATE: DocumentTemplate(
        slug=RequestType.RESIDENCY_CERTIFICATE.value,
        payload_schema=ResidencyCertificatePayload,
        template_path="acte_residence.html.jinja",
        layout="letter",
        title="CERTIFICAT DE RÉSIDENCE",
    ),
    RequestType.IDENTITY_CARD: DocumentTemplate(
        slug=RequestType.IDENTITY_CARD.value,
        payload_schema=IdentityCardPayload,
        template_path="carte_identite.html.jinja",
        layout="card",
        title="CARTE D'IDENTITÉ",
        wallet_pass_eligible=True,
    ),
}

FALLBACK_DOCUMENT = DocumentTemplate(
    slug="unsupported",
    payload_schema=UnsupportedPayload,
    template_path="non_standard.html.jinja",
    layout="fallback",
    title="Document Non Standard",
)


def resolve_document(request_type: str) -> DocumentTemplate:
    """Return the template entry for a request type, or the fallback entry."""
    try:
        return DOCUMENT_REGISTRY[RequestType(request_type)]
    except ValueError:
        return FALLBACK_DOCUMENT
