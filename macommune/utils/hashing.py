"""
Integrity hashing for issued documents.

The verification endpoint publishes the hash of the artifact currently
on file, so a holder can compare it with a copy they received.

IMPORTANT DESIGN RULE:
- This module hashes bytes, and bytes only.
- Reading the artifact from storage happens in the artifact store.
"""

import hashlib
from typing import Union


def compute_document_hash(pdf_bytes: Union[bytes, bytearray]) -> str:
    """
    Compute a human-readable SHA-256 hash of an artifact.

    Returns:
        A hash string with an explicit algorithm prefix.
        Example: ``SHA-256:3b7c0e4c...``
    """
    if not isinstance(pdf_bytes, (bytes, bytearray)):
        raise TypeError(
            "compute_document_hash expects bytes, "
            f"got {type(pdf_bytes).__name__}"
        )

    digest = hashlib.sha256(pdf_bytes).hexdigest()
    return f"SHA-256:{digest}"
