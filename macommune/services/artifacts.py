"""
Artifact storage for rendered documents.

This module binds verification metadata into a rendered PDF and writes
it to the documents directory.

Design guarantees:
- The verification token, URL and request id are stamped into XMP
  (Clark notation, dedicated namespace) before the file is written
- A file only appears under its final name once fully written
  (temporary ".part" file, then atomic rename)
- A failed write leaves no partial file behind

Trust boundary:
- This module does NOT interpret document content.
- Sealing, when enabled, happens strictly downstream of the write.
"""

import io
import logging
import os
from pathlib import Path
from typing import Optional

import pikepdf

from macommune.core.config import Settings
from macommune.core.errors import ArtifactWriteError

logger = logging.getLogger(__name__)

XMP_NAMESPACE = "https://ma-commune.cd/ns/document/1.0/"


def artifact_filename(
    request_type: str,
    request_id: int,
    token: str,
    *,
    signed: bool = False,
) -> str:
    """
    `{type}_{id}_{token}.pdf`, or `{type}_{id}_{token}_signed.pdf`.
    """
    suffix = "_signed" if signed else ""
    return f"{request_type}_{request_id}_{token}{suffix}.pdf"


def stamp_verification_xmp(
    pdf_bytes: bytes,
    *,
    request_id: int,
    token: str,
    verification_url: str,
) -> bytes:
    """
    Bind the verification token and URL into the PDF's XMP metadata.

    Deterministic and non-authoritative: the record in the store stays
    the source of truth.
    """
    try:
        with pikepdf.open(io.BytesIO(pdf_bytes)) as pdf:
            with pdf.open_metadata() as meta:
                meta[f"{{{XMP_NAMESPACE}}}requestId"] = str(request_id)
                meta[f"{{{XMP_NAMESPACE}}}verificationToken"] = token
                meta[f"{{{XMP_NAMESPACE}}}verificationUrl"] = verification_url

            out = io.BytesIO()
            pdf.save(out)
            return out.getvalue()

    except Exception as exc:
        raise ArtifactWriteError(
            f"Failed to bind verification metadata into XMP: {exc}"
        ) from exc


class ArtifactStore:
    """Filesystem store for draft and signed PDF artifacts."""

    def __init__(self, settings: Settings) -> None:
        self._root = Path(settings.documents_dir)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, filename: str) -> Path:
        # Stored references are bare filenames; refuse anything else.
        name = Path(filename).name
        if not name or name != filename:
            raise ArtifactWriteError(f"Invalid artifact filename '{filename}'.")
        return self._root / name

    def exists(self, filename: Optional[str]) -> bool:
        if not filename:
            return False
        try:
            return self.path_for(filename).is_file()
        except ArtifactWriteError:
            return False

    def read(self, filename: str) -> bytes:
        return self.path_for(filename).read_bytes()

    def write(
        self,
        filename: str,
        pdf_bytes: bytes,
        *,
        request_id: int,
        token: str,
        verification_url: str,
    ) -> Path:
        """
        Stamp and atomically write a rendered PDF.

        Returns:
            Path of the written artifact.

        Raises:
            ArtifactWriteError:
                If stamping or writing fails. No partial file remains.
        """
        stamped = stamp_verification_xmp(
            pdf_bytes,
            request_id=request_id,
            token=token,
            verification_url=verification_url,
        )
        return self.write_bytes(filename, stamped)

    def write_bytes(self, filename: str, data: bytes) -> Path:
        target = self.path_for(filename)
        partial = target.with_name(target.name + ".part")

        try:
            self._root.mkdir(parents=True, exist_ok=True)
            partial.write_bytes(data)
            os.replace(partial, target)
        except OSError as exc:
            if partial.exists():
                partial.unlink()
            raise ArtifactWriteError(
                f"Failed to write artifact '{filename}': {exc}"
            ) from exc

        logger.info(
            "artifact_written",
            extra={"artifact_filename": filename, "size_bytes": len(data)},
        )
        return target
