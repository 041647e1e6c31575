"""
SQLAlchemy ORM models for the civic registry.

Only the columns the document workflow reads or writes are modelled.
Entity CRUD for communes, agents, citizens, provinces and administrators
lives in the surrounding administration backend.

Models:
    - Province
    - Commune: belongs to a province, optionally run by an administrator
    - Administrateur: bourgmestre account, signs validated documents
    - Agent: processes requests for a commune
    - Citoyen: demographic record, read-only input to rendering
    - Demande: the citizen request carrying the artifact reference
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import declarative_base, relationship

from macommune.schemas.demande import RequestStatus

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Province(Base):
    __tablename__ = "provinces"

    id = Column(Integer, primary_key=True)
    nom = Column(String(120), nullable=False)

    communes = relationship("Commune", back_populates="province")


class Commune(Base):
    __tablename__ = "communes"

    id = Column(Integer, primary_key=True)
    nom = Column(String(120), nullable=False)
    province_id = Column(
        Integer, ForeignKey("provinces.id", ondelete="SET NULL"), nullable=True
    )
    admin_id = Column(Integer, nullable=True)

    province = relationship("Province", back_populates="communes")


class Administrateur(Base):
    __tablename__ = "administrateurs"

    id = Column(Integer, primary_key=True)
    prenom = Column(String(120), nullable=True)
    nom = Column(String(120), nullable=True)
    email = Column(String(255), nullable=True, unique=True)
    commune_id = Column(
        Integer, ForeignKey("communes.id", ondelete="SET NULL"), nullable=True
    )


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Integer, primary_key=True)
    prenom = Column(String(120), nullable=True)
    nom = Column(String(120), nullable=True)
    commune_id = Column(
        Integer, ForeignKey("communes.id", ondelete="SET NULL"), nullable=True
    )


class Citoyen(Base):
    __tablename__ = "citoyens"

    id = Column(Integer, primary_key=True)
    nom = Column(String(120), nullable=True)
    postnom = Column(String(120), nullable=True)
    prenom = Column(String(120), nullable=True)
    sexe = Column(String(16), nullable=True)
    date_naissance = Column(Date, nullable=True)
    lieu_naissance = Column(String(255), nullable=True)
    numero_unique = Column(String(64), nullable=True, unique=True)
    commune_id = Column(
        Integer, ForeignKey("communes.id", ondelete="SET NULL"), nullable=True
    )

    commune = relationship("Commune")


class Demande(Base):
    """
    A citizen's application for a civic document.

    Invariant: document_path and verification_token are both set or
    both NULL.
    """

    __tablename__ = "demandes"

    id = Column(Integer, primary_key=True)
    type_demande = Column(String(64), nullable=False)
    donnees_json = Column(JSON, nullable=False, default=dict)

    statut = Column(
        Enum(
            RequestStatus,
            name="statut_demande",
            native_enum=False,
            length=32,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RequestStatus.SUBMITTED,
    )

    citoyen_id = Column(
        Integer, ForeignKey("citoyens.id", ondelete="CASCADE"), nullable=False
    )
    commune_id = Column(
        Integer, ForeignKey("communes.id", ondelete="SET NULL"), nullable=True
    )
    agent_id = Column(
        Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True
    )

    document_path = Column(String(512), nullable=True)
    verification_token = Column(String(64), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    citoyen = relationship("Citoyen")
    commune = relationship("Commune")
    agent = relationship("Agent")

    __table_args__ = (
        Index("ix_demandes_citoyen_statut", "citoyen_id", "statut"),
        Index("ix_demandes_statut_created", "statut", "created_at"),
    )
