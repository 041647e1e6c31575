from .config import Settings, get_settings
from .errors import (
    ArtifactWriteError,
    DocumentWorkflowError,
    Forbidden,
    NotFound,
    PersistenceFailure,
    PreconditionFailed,
    RasterizationError,
    RenderingFailure,
    SealingError,
    TemplateRenderError,
    TokenIssuanceError,
)

__all__ = [
    "Settings",
    "get_settings",
    "DocumentWorkflowError",
    "NotFound",
    "PreconditionFailed",
    "Forbidden",
    "RenderingFailure",
    "TemplateRenderError",
    "TokenIssuanceError",
    "RasterizationError",
    "ArtifactWriteError",
    "SealingError",
    "PersistenceFailure",
]
