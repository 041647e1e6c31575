"""
Error taxonomy for the document workflow.

Every failure raised by the core is a DocumentWorkflowError. The HTTP
layer translates each family to a status code; nothing below the API
layer knows about HTTP.
"""

from typing import Optional


class DocumentWorkflowError(RuntimeError):
    """Base class for all document workflow failures."""


class NotFound(DocumentWorkflowError):
    """Raised when a request, citizen or artifact lookup fails."""


class PreconditionFailed(DocumentWorkflowError):
    """
    Raised when a transition is attempted from the wrong state.

    Covers validation of a request that is not 'en traitement', that has
    no draft yet, or that lost a concurrent validation race.
    """


class Forbidden(DocumentWorkflowError):
    """Raised when the caller's role or identity does not permit the operation."""


class RenderingFailure(DocumentWorkflowError):
    """Raised when a document could not be turned into a PDF artifact."""


class TemplateRenderError(RenderingFailure):
    """Raised when HTML template rendering fails."""


class TokenIssuanceError(RenderingFailure):
    """Raised when the verification QR code cannot be produced."""


class RasterizationError(RenderingFailure):
    """Raised when the headless engine fails to launch, load or print."""


class ArtifactWriteError(RenderingFailure):
    """Raised when a rendered PDF cannot be stamped or written to storage."""


class SealingError(RenderingFailure):
    """Raised when cryptographic sealing of a signed artifact fails."""


class PersistenceFailure(DocumentWorkflowError):
    """
    Raised when the store update fails after an artifact was written.

    The artifact file exists on disk but the request record does not
    reference it. Carries enough detail to reconcile manually.
    """

    def __init__(
        self,
        message: str,
        *,
        request_id: int,
        filename: Optional[str] = None,
        verification_token: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.filename = filename
        self.verification_token = verification_token
