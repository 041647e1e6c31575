"""
Domain vocabulary shared by the store, the workflow and the API layer.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RequestStatus(str, Enum):
    """
    Closed set of request statuses.

    Stored verbatim in the `demandes.statut` column.
    """

    SUBMITTED = "soumise"
    IN_PROCESSING = "en traitement"
    VALIDATED = "validée"
    REJECTED = "rejetée"


class RequestType(str, Enum):
    """Request types with a dedicated document template."""

    BIRTH_CERTIFICATE = "acte_naissance"
    MARRIAGE_CERTIFICATE = "acte_mariage"
    RESIDENCY_CERTIFICATE = "acte_residence"
    IDENTITY_CARD = "carte_identite"


class Role(str, Enum):
    """Roles attached to each call by the authentication gateway."""

    CITIZEN = "citoyen"
    ADMIN = "admin"  # bourgmestre of a commune
    ADMIN_GENERAL = "admin_general"  # province level
    SUPER_ADMIN = "super_admin"


ADMINISTRATIVE_ROLES = frozenset(
    {Role.ADMIN, Role.ADMIN_GENERAL, Role.SUPER_ADMIN}
)


class Principal(BaseModel):
    """Authenticated caller identity as attached by the gateway."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=1)
    role: Role

    @property
    def is_administrative(self) -> bool:
        return self.role in ADMINISTRATIVE_ROLES


class ArtifactRef(BaseModel):
    """Result of a successful generate or validate operation."""

    request_id: int
    document_ref: str
    verification_url: str
    status: RequestStatus
    signed: bool = False


class VerificationResult(BaseModel):
    """Public answer behind the verification URL."""

    request_id: int
    request_type: str
    status: RequestStatus
    citizen_name: str
    commune: Optional[str] = None
    issued_at: Optional[str] = None
    signed: bool
    document_hash: Optional[str] = Field(
        default=None,
        description="SHA-256 of the current artifact, when it exists on disk",
    )


class RequestSummary(BaseModel):
    """Row of the validation queue and of a citizen's document list."""

    id: int
    request_type: str
    status: RequestStatus
    citizen_id: int
    citizen_name: Optional[str] = None
    agent_id: Optional[int] = None
    document_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
