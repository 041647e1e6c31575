"""
Wallet pass content for issued identity cards.

Only document types flagged `wallet_pass_eligible` in the registry have
a wallet representation. For every other type no pass is produced at
all, which the HTTP layer reports as 204 No Content.
"""

from macommune.db.models import Citoyen
from macommune.schemas.wallet import WalletBarcode, WalletField, WalletPass


def build_wallet_pass(citizen: Citoyen, verification_url: str) -> WalletPass:
    """Pass descriptor for a citizen's card, barcoded with its verification URL."""
    numero = citizen.numero_unique or "N/A"
    return WalletPass(
        serial_number=f"ID-{numero}",
        barcode=WalletBarcode(message=verification_url),
        primary_fields=[
            WalletField(key="nom", label="Nom", value=citizen.nom or "N/A"),
            WalletField(key="prenom", label="Prénom", value=citizen.prenom or "N/A"),
            WalletField(key="numero", label="ID Unique", value=numero),
        ],
    )
