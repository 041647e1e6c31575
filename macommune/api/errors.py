"""
Translation of workflow failures into HTTP errors.

Internal failure details stay in the logs; clients receive a short
French message.
"""

from fastapi import HTTPException, status

from macommune.core.errors import (
    DocumentWorkflowError,
    Forbidden,
    NotFound,
    PersistenceFailure,
    PreconditionFailed,
    RenderingFailure,
)


def to_http_exception(exc: DocumentWorkflowError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, PreconditionFailed):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, Forbidden):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, RenderingFailure):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erreur lors de la génération du document.",
        )
    if isinstance(exc, PersistenceFailure):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=(
                "Le document a été généré mais la demande n'a pas pu être "
                "mise à jour."
            ),
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Erreur serveur.",
    )
