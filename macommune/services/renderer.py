"""
HTML rendering service.

This module transforms a demande's resolved data into a self-contained
HTML document, ready for rasterization.

Design guarantees:
- Deterministic template rendering (Jinja2 + StrictUndefined)
- HTML autoescaping of every interpolated value
- Inlined styling only; no external stylesheet
- Missing optional values render as "N/A", never as an error
- Unknown request types render the fallback document, never an error

RENDERING MODES:

    draft    generic signature block, no approver name
    signed   signature block bound to the approver's display name

Trust boundary:
- This module is presentation-only.
- Who may sign, token issuance, persistence and rasterization happen
  strictly outside this module.

The logo is inlined as a data URI when the configured file exists.
Otherwise the hosted copy is referenced by absolute URL, which is the
one network fetch the rasterizer is allowed to perform.
"""

import base64
import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Literal, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError
from pydantic import BaseModel

from macommune.core.config import Settings
from macommune.core.errors import TemplateRenderError
from macommune.registry.registry import resolve_document

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"
FALLBACK_SIGNER_LABEL = "Le Bourgmestre"
PHOTO_PLACEHOLDER_URL = "https://placehold.co/70x70/003DA5/FFFFFF?text=PHOTO"
DEFAULT_PROVINCE = "Kinshasa"

LOCALHOST_ORIGINS = ("http://localhost:4000", "https://localhost:4000")

RenderMode = Literal["draft", "signed"]


# ------------------------------------------------------------------
# Render inputs
# ------------------------------------------------------------------

@dataclass(frozen=True)
class CitizenView:
    nom: Optional[str] = None
    postnom: Optional[str] = None
    prenom: Optional[str] = None
    sexe: Optional[str] = None
    date_naissance: Optional[date] = None
    lieu_naissance: Optional[str] = None
    numero_unique: Optional[str] = None


@dataclass(frozen=True)
class DocumentData:
    """
    Everything a template may interpolate, already resolved.

    The lifecycle manager builds this from the store; the renderer
    never performs I/O besides reading templates and the logo.
    """

    request_id: int
    request_type: str
    payload: BaseModel
    citizen: CitizenView
    commune_name: Optional[str] = None
    province_name: Optional[str] = None
    birth_commune_name: Optional[str] = None
    birth_province_name: Optional[str] = None


# ------------------------------------------------------------------
# Jinja filters
# ------------------------------------------------------------------

def _na(value: Any) -> Any:
    if value is None:
        return NOT_AVAILABLE
    if isinstance(value, str) and not value.strip():
        return NOT_AVAILABLE
    return value


def format_fr_date(value: Any) -> str:
    """Format a date as DD/MM/YYYY (fr-FR convention); "N/A" when absent."""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    return NOT_AVAILABLE


def _or_empty(value: Any) -> Any:
    return "" if value is None else value


def approver_display_name(prenom: Optional[str], nom: Optional[str]) -> str:
    """
    "Prénom Nom", trimmed. Falls back to the generic bourgmestre label
    when both parts are empty so the signature is never blank.
    """
    name = f"{prenom or ''} {nom or ''}".strip()
    return name or FALLBACK_SIGNER_LABEL


class HtmlRenderer:
    """
    Renders civic documents from the HTML templates in the template dir.
    """

    def __init__(self, settings: Settings) -> None:
        template_root = Path(settings.template_dir).resolve()
        if not template_root.is_dir():
            raise RuntimeError(f"Template directory does not exist: {template_root}")

        self._public_base_url = str(settings.public_base_url).rstrip("/")
        self._logo_path = Path(settings.logo_path)
        self._hosted_logo_url = settings.hosted_logo_url
        self._logo_src: Optional[str] = None

        self._env = Environment(
            loader=FileSystemLoader(template_root),
            undefined=StrictUndefined,
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._env.filters["na"] = _na
        self._env.filters["fr_date"] = format_fr_date
        self._env.filters["or_empty"] = _or_empty

    # ------------------------------------------------------------------
    # Resolved assets
    # ------------------------------------------------------------------

    @property
    def logo_src(self) -> str:
        if self._logo_src is None:
            self._logo_src = self._load_logo()
        return self._logo_src

    def _load_logo(self) -> str:
        try:
            logo_bytes = self._logo_path.read_bytes()
        except OSError:
            logger.warning(
                "logo_not_found_using_hosted_copy",
                extra={"logo_path": str(self._logo_path)},
            )
            return self._hosted_logo_url

        encoded = base64.b64encode(logo_bytes).decode("ascii")
        return f"data:image/png;base64,{encoded}"

    def resolve_photo_url(self, photo_url: Optional[str]) -> str:
        """Rewrite development photo URLs to the public origin."""
        if not photo_url:
            return PHOTO_PLACEHOLDER_URL
        for origin in LOCALHOST_ORIGINS:
            photo_url = photo_url.replace(origin, self._public_base_url)
        return photo_url

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def render(
        self,
        data: DocumentData,
        *,
        mode: RenderMode,
        verification_url: str,
        qr_code: str,
        approver_name: Optional[str] = None,
        issued_on: Optional[date] = None,
    ) -> str:
        """
        Render the HTML document for a demande.

        Args:
            data:
                Resolved demande, citizen and location data.
            mode:
                'draft' or 'signed'.
            verification_url:
                The demande's public verification URL.
            qr_code:
                Image source (data URI) encoding verification_url.
            approver_name:
                Display name printed in the signed signature block. Ignored
                in draft mode. Empty or None prints the fallback label.
            issued_on:
                Issue date; defaults to today.

        Raises:
            TemplateRenderError:
                If a template is missing or fails to render.
        """
        if mode not in ("draft", "signed"):
            raise TemplateRenderError(f"Unknown rendering mode '{mode}'.")

        document = resolve_document(data.request_type)

        signer_name: Optional[str] = None
        if mode == "signed":
            signer_name = (approver_name or "").strip() or FALLBACK_SIGNER_LABEL

        photo_src = PHOTO_PLACEHOLDER_URL
        if document.layout == "card":
            photo_src = self.resolve_photo_url(getattr(data.payload, "photo_url", None))

        context = {
            "document": document,
            "request_id": data.request_id,
            "request_type": data.request_type,
            "payload": data.payload,
            "citizen": data.citizen,
            "commune_name": data.commune_name,
            "province_name": data.province_name or DEFAULT_PROVINCE,
            "birth_commune_name": data.birth_commune_name,
            "birth_province_name": data.birth_province_name,
            "issued_on": format_fr_date(issued_on or date.today()),
            "logo_src": self.logo_src,
            "photo_src": photo_src,
            "mode": mode,
            "signer_name": signer_name,
            "verification_url": verification_url,
            "qr_code": qr_code,
        }

        try:
            template = self._env.get_template(document.template_path)
            return template.render(context)
        except TemplateError as exc:
            raise TemplateRenderError(
                f"Failed to render template '{document.template_path}' "
                f"for demande {data.request_id}: {exc}"
            ) from exc
