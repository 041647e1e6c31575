"""
Demande repository.

Handles:
  - Eager loading a request with everything its document needs
  - Artifact reference updates (set / clear, always as a pair)
  - The compare-and-swap transition to 'validée'
  - Lookups backing verification and the validation queues

Every method opens its own short session: no transaction is held open
while a document is being rendered.
"""

import logging
from typing import List, Optional

from sqlalchemy import desc, select, update
from sqlalchemy.orm import selectinload

from macommune.db.models import Administrateur, Citoyen, Commune, Demande, Province
from macommune.db.session import Database
from macommune.schemas.demande import RequestStatus

logger = logging.getLogger(__name__)


class DemandeRepository:
    """Repository for demandes and the entities their documents reference."""

    def __init__(self, database: Database) -> None:
        self._db = database

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_for_rendering(self, demande_id: int) -> Optional[Demande]:
        """Load a demande with citizen, commune, province and agent."""
        stmt = (
            select(Demande)
            .where(Demande.id == demande_id)
            .options(
                selectinload(Demande.citoyen)
                .selectinload(Citoyen.commune)
                .selectinload(Commune.province),
                selectinload(Demande.commune).selectinload(Commune.province),
                selectinload(Demande.agent),
            )
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def get(self, demande_id: int) -> Optional[Demande]:
        async with self._db.session() as session:
            return await session.get(Demande, demande_id)

    async def get_by_token(self, token: str) -> Optional[Demande]:
        stmt = (
            select(Demande)
            .where(Demande.verification_token == token)
            .options(
                selectinload(Demande.citoyen).selectinload(Citoyen.commune),
            )
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_commune(self, commune_id: int) -> Optional[Commune]:
        async with self._db.session() as session:
            return await session.get(Commune, commune_id)

    async def get_province(self, province_id: int) -> Optional[Province]:
        async with self._db.session() as session:
            return await session.get(Province, province_id)

    async def get_administrateur(self, admin_id: int) -> Optional[Administrateur]:
        async with self._db.session() as session:
            return await session.get(Administrateur, admin_id)

    async def list_in_processing(self) -> List[Demande]:
        """Requests waiting for a bourgmestre signature, newest first."""
        stmt = (
            select(Demande)
            .where(Demande.statut == RequestStatus.IN_PROCESSING)
            .options(selectinload(Demande.citoyen), selectinload(Demande.agent))
            .order_by(desc(Demande.created_at), desc(Demande.id))
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_validated_for_citizen(self, citoyen_id: int) -> List[Demande]:
        """A citizen's validated requests, most recently updated first."""
        stmt = (
            select(Demande)
            .where(
                Demande.citoyen_id == citoyen_id,
                Demande.statut == RequestStatus.VALIDATED,
            )
            .options(selectinload(Demande.citoyen))
            .order_by(desc(Demande.updated_at), desc(Demande.id))
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def set_artifact(
        self,
        demande_id: int,
        *,
        document_path: str,
        verification_token: str,
    ) -> None:
        """Point the demande at a freshly written draft artifact."""
        stmt = (
            update(Demande)
            .where(Demande.id == demande_id)
            .values(
                document_path=document_path,
                verification_token=verification_token,
            )
        )
        async with self._db.session() as session:
            await session.execute(stmt)

    async def clear_artifact(self, demande_id: int) -> None:
        """Force the artifact pair back to NULL."""
        stmt = (
            update(Demande)
            .where(Demande.id == demande_id)
            .values(document_path=None, verification_token=None)
        )
        async with self._db.session() as session:
            await session.execute(stmt)

    async def mark_validated(
        self,
        demande_id: int,
        *,
        signed_document_path: str,
        verification_token: str,
    ) -> bool:
        """
        Transition to 'validée' if and only if the demande is still
        'en traitement' with the same verification token.

        Returns False when another writer got there first.
        """
        stmt = (
            update(Demande)
            .where(
                Demande.id == demande_id,
                Demande.statut == RequestStatus.IN_PROCESSING,
                Demande.verification_token == verification_token,
            )
            .values(
                statut=RequestStatus.VALIDATED,
                document_path=signed_document_path,
            )
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1
