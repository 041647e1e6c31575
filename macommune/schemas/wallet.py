"""
Wallet pass descriptor for the citizen identity card.

Only the pass content is modelled here. Packaging it into a signed
`.pkpass` bundle requires the issuer's Apple certificates and happens
outside this service.
"""

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WalletModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class WalletBarcode(_WalletModel):
    message: str
    format: Literal["PKBarcodeFormatQR"] = "PKBarcodeFormatQR"
    message_encoding: str = "iso-8859-1"


class WalletField(_WalletModel):
    key: str
    label: str
    value: str


class WalletPass(_WalletModel):
    organization_name: str = "RDC Digital"
    serial_number: str
    description: str = "Carte citoyen"
    background_color: str = "rgb(0,61,165)"
    foreground_color: str = "white"
    label_color: str = "white"
    barcode: WalletBarcode
    primary_fields: List[WalletField] = Field(default_factory=list)
