"""
Centralized configuration management for the Ma Commune document engine.

Pydantic v2 settings management to enforce strict validation, zero
secret leakage, and fast-failure on invalid configuration.

The Settings object is constructed ONCE at startup and passed by
reference into the token issuer, renderer, rasterizer, artifact store
and lifecycle manager. No component reads the process environment
mid-operation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal, Optional

from pydantic import AnyHttpUrl, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PACKAGE_ROOT = Path(__file__).resolve().parent.parent


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

SensitiveEnv = Annotated[
    SecretStr,
    Field(description="Sensitive credential, redacted from logs"),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Fails fast at startup if the sealing backend is selected without
    the parameters it needs.
    """

    # ---------------------------------------------------------------------
    # Persistence
    # ---------------------------------------------------------------------

    database_url: Annotated[
        str,
        Field(
            default="sqlite+aiosqlite:///./data/macommune.db",
            description="SQLAlchemy async database URL",
        ),
    ]

    documents_dir: Annotated[
        Path,
        Field(
            default=Path("documents"),
            description="Directory holding generated PDF artifacts",
        ),
    ]

    # ---------------------------------------------------------------------
    # Public URLs
    # ---------------------------------------------------------------------

    public_base_url: Annotated[
        AnyHttpUrl,
        Field(
            default="https://ma-commune-backend.onrender.com",
            description=(
                "Externally reachable base URL. Used for the hosted logo "
                "fallback and to rewrite localhost photo URLs."
            ),
        ),
    ]

    verification_base_url: Annotated[
        AnyHttpUrl,
        Field(
            default="https://ma-commune-backend.onrender.com/verify-document",
            description="Public verification endpoint encoded in QR codes",
        ),
    ]

    # ---------------------------------------------------------------------
    # Rendering
    # ---------------------------------------------------------------------

    template_dir: Annotated[
        Path,
        Field(
            default=PACKAGE_ROOT / "templates",
            description="Directory holding the HTML Jinja templates",
        ),
    ]

    logo_path: Annotated[
        Path,
        Field(
            default=Path("public/assets/images/app_logo.png"),
            description=(
                "Local PNG logo inlined as a data URI. When missing, the "
                "hosted copy under public_base_url is referenced instead."
            ),
        ),
    ]

    render_timeout_seconds: Annotated[
        float,
        Field(
            default=120.0,
            gt=0,
            description="Upper bound for each headless rendering step",
        ),
    ]

    renderer_pool_size: Annotated[
        int,
        Field(
            default=0,
            ge=0,
            le=32,
            description=(
                "0 launches one browser per render (full isolation). "
                "N > 0 keeps a warm browser and allows at most N "
                "concurrent isolated contexts."
            ),
        ),
    ]

    browser_args: Annotated[
        List[str],
        Field(
            default_factory=lambda: [
                "--disable-gpu",
                "--disable-dev-shm-usage",
                "--no-sandbox",
            ],
            description="Extra Chromium command line switches",
        ),
    ]

    # ---------------------------------------------------------------------
    # Signing workflow
    # ---------------------------------------------------------------------

    signer_policy: Annotated[
        Literal["strict", "fallback"],
        Field(
            default="strict",
            description=(
                "strict: validation requires a resolvable bourgmestre "
                "identity (Forbidden otherwise). fallback: sign with a "
                "placeholder label when the identity cannot be resolved."
            ),
        ),
    ]

    sealing_backend: Annotated[
        Literal["none", "local", "http"],
        Field(
            default="none",
            description="Cryptographic sealing applied to signed artifacts",
        ),
    ]

    sealing_p12_path: Annotated[
        Optional[Path],
        Field(default=None, description="PKCS#12 bundle for local sealing"),
    ]

    sealing_p12_password: Annotated[
        Optional[SecretStr],
        Field(default=None, description="Passphrase for the PKCS#12 bundle"),
    ]

    sealing_http_url: Annotated[
        Optional[AnyHttpUrl],
        Field(default=None, description="External sealing service endpoint"),
    ]

    sealing_reason: str = "Document délivré par la commune"

    # ---------------------------------------------------------------------
    # Operational
    # ---------------------------------------------------------------------

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(
        env_prefix="MACOMMUNE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    # ---------------------------------------------------------------------
    # Validators (Pydantic v2)
    # ---------------------------------------------------------------------

    @field_validator("sealing_backend", "signer_policy", mode="before")
    @classmethod
    def _lowercase_choice(cls, v):
        return v.lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _sealing_backend_requirements(self) -> "Settings":
        if self.sealing_backend == "local" and self.sealing_p12_path is None:
            raise ValueError(
                "MACOMMUNE_SEALING_BACKEND=local requires "
                "MACOMMUNE_SEALING_P12_PATH."
            )
        if self.sealing_backend == "http" and self.sealing_http_url is None:
            raise ValueError(
                "MACOMMUNE_SEALING_BACKEND=http requires "
                "MACOMMUNE_SEALING_HTTP_URL."
            )
        return self

    @property
    def hosted_logo_url(self) -> str:
        return f"{str(self.public_base_url).rstrip('/')}/public/assets/images/app_logo.png"


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.

    Uses an explicit singleton pattern within the FastAPI lifecycle.
    """
    return Settings()  # singleton within process
