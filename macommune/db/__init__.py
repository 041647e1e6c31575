"""
Persistence layer for the document workflow.

Provides:
- ORM models for demandes and the entities their documents reference
- Async session management
- The demande repository used by the lifecycle manager
"""

from .models import Administrateur, Agent, Base, Citoyen, Commune, Demande, Province
from .repository import DemandeRepository
from .session import Database

__all__ = [
    "Base",
    "Province",
    "Commune",
    "Administrateur",
    "Agent",
    "Citoyen",
    "Demande",
    "Database",
    "DemandeRepository",
]
