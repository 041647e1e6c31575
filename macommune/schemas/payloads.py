"""
Type-specific request payloads.

Each request type carries its own payload shape; the registry picks the
model from the request type stored on the demande.

Payloads are accepted in snake_case and in the camelCase produced by
the citizen mobile client (`nomEnfant`, `communeNaissanceEnfantId`...).
Every field is optional: a missing value renders as "N/A", it never
fails rendering.
"""

from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _lenient_date(value: Any) -> Optional[date]:
    """
    Accept ISO dates and ISO datetimes; anything unparsable becomes None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def _lenient_id(value: Any) -> Optional[int]:
    """Positive integer ids; blanks and non-numeric form values become None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or None
    return None


class _PayloadBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        coerce_numbers_to_str=True,
        str_strip_whitespace=True,
    )


# ------------------------------------------------------------------
# Certificates (letter layout)
# ------------------------------------------------------------------

class BirthCertificatePayload(_PayloadBase):
    """Acte de naissance: the child and both parents."""

    nom_enfant: Optional[str] = None
    postnom_enfant: Optional[str] = None
    prenom_enfant: Optional[str] = None
    sexe_enfant: Optional[str] = None
    date_naissance_enfant: Optional[date] = None
    lieu_naissance_enfant: Optional[str] = None
    commune_naissance_enfant_id: Optional[int] = None
    province_naissance_enfant_id: Optional[int] = None

    nom_pere: Optional[str] = None
    prenom_pere: Optional[str] = None
    nom_mere: Optional[str] = None
    prenom_mere: Optional[str] = None

    @field_validator("date_naissance_enfant", mode="before")
    @classmethod
    def _parse_birth_date(cls, v: Any) -> Optional[date]:
        return _lenient_date(v)

    @field_validator(
        "commune_naissance_enfant_id", "province_naissance_enfant_id", mode="before"
    )
    @classmethod
    def _parse_place_ids(cls, v: Any) -> Optional[int]:
        return _lenient_id(v)


class MarriageCertificatePayload(_PayloadBase):
    """Acte de mariage: the applicant is the husband, the payload names the spouse."""

    nom_conjoint: Optional[str] = None
    postnom_conjoint: Optional[str] = None
    prenom_conjoint: Optional[str] = None
    date_mariage: Optional[date] = None

    @field_validator("date_mariage", mode="before")
    @classmethod
    def _parse_wedding_date(cls, v: Any) -> Optional[date]:
        return _lenient_date(v)


class ResidencyCertificatePayload(_PayloadBase):
    adresse_complete: Optional[str] = None


# ------------------------------------------------------------------
# Identity card (compact layout)
# ------------------------------------------------------------------

class IdentityCardPayload(_PayloadBase):
    photo_url: Optional[str] = None


# ------------------------------------------------------------------
# Anything else
# ------------------------------------------------------------------

class UnsupportedPayload(_PayloadBase):
    """
    Payload of a request type without a dedicated template.

    Kept verbatim for auditing; never interpolated into a document.
    """

    raw: Dict[str, Any] = Field(default_factory=dict)
