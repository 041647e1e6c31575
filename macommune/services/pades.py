"""
PAdES-based cryptographic sealing.

Applies an incremental PAdES-B signature to a signed civic document
using pyHanko and the commune's PKCS#12 seal.

Design guarantees:
- Incremental signing; the XMP verification metadata is preserved
- No content rewriting or reserialization
- Sealing applied strictly after the document is rendered and stamped
"""

import io
from pathlib import Path
from typing import Optional

from pyhanko.pdf_utils.incremental_writer import IncrementalPdfFileWriter
from pyhanko.sign import signers
from pyhanko.sign.fields import SigFieldSpec, SigSeedSubFilter

from macommune.core.errors import SealingError

SIGNATURE_FIELD = "SceauCommune"


def load_pkcs12_signer(
    p12_path: Path,
    passphrase: Optional[str] = None,
) -> signers.SimpleSigner:
    """
    Raises:
        SealingError:
            If the bundle cannot be read or decrypted.
    """
    try:
        signer = signers.SimpleSigner.load_pkcs12(
            str(p12_path),
            passphrase=passphrase.encode("utf-8") if passphrase else None,
        )
    except Exception as exc:
        raise SealingError(f"Failed to load PKCS#12 signing key: {exc}") from exc

    if signer is None:
        raise SealingError(f"PKCS#12 bundle could not be loaded: {p12_path}")
    return signer


def seal_pdf_pades_b(
    pdf_bytes: bytes,
    *,
    signer: signers.SimpleSigner,
    reason: str,
    location: Optional[str] = None,
) -> bytes:
    """
    Apply a PAdES-B signature and return the sealed PDF bytes.

    Raises:
        SealingError:
            If signing fails.
    """
    try:
        writer = IncrementalPdfFileWriter(io.BytesIO(pdf_bytes))
        output = io.BytesIO()

        signers.sign_pdf(
            writer,
            signature_meta=signers.PdfSignatureMetadata(
                field_name=SIGNATURE_FIELD,
                reason=reason,
                location=location,
                subfilter=SigSeedSubFilter.PADES,
            ),
            signer=signer,
            output=output,
            new_field_spec=SigFieldSpec(sig_field_name=SIGNATURE_FIELD),
        )
    except Exception as exc:
        raise SealingError(f"PAdES-B signing failed: {exc}") from exc

    return output.getvalue()
