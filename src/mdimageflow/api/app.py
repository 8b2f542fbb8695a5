"""FastAPI application exposing prediction and link rewriting to editor hosts."""

import secrets
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .. import __version__
from ..images import find_local_images
from ..paths.patterns import generate_watch_patterns


class PredictRequest(BaseModel):
    document: str
    image: str


class RewriteRequest(BaseModel):
    document: str
    image: str
    url: str


def create_app(runtime: Any, token: str | None = None, enable_cors: bool = False) -> Any:
    """
    Create FastAPI application with runtime injected.

    Args:
        runtime: Runtime instance with predictor, rewriter and config
        token: Bearer token for authentication (None to disable auth)
        enable_cors: Enable CORS middleware

    Returns:
        FastAPI application instance
    """
    app = FastAPI(
        title="mdimageflow API",
        description="Local JSON API for image destination prediction and link rewriting",
        version=__version__,
        docs_url="/docs" if token is None else None,
        redoc_url="/redoc" if token is None else None,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    if token:
        security_scheme = HTTPBearer(auto_error=False)

        async def verify_token(
            credentials: HTTPAuthorizationCredentials | None = Security(security_scheme),  # noqa: B008
        ) -> None:
            """Verify bearer token."""
            if credentials is None or credentials.credentials != token:
                raise HTTPException(status_code=401, detail="Invalid or missing token")
    else:

        async def verify_token() -> None:
            """No-op when auth is disabled."""
            return None

    @app.get("/health")  # type: ignore[misc]
    async def health(auth: None = Depends(verify_token)) -> dict[str, Any]:
        """Health check endpoint."""
        return {"status": "ok", "version": __version__}

    @app.get("/patterns")  # type: ignore[misc]
    async def patterns(auth: None = Depends(verify_token)) -> list[str]:
        """Workspace-relative watch globs for the configured rules."""
        config = runtime.config
        return generate_watch_patterns(config.destination_rules, config.watch.image_extensions)

    @app.post("/predict")  # type: ignore[misc]
    async def predict(req: PredictRequest, auth: None = Depends(verify_token)) -> dict[str, Any]:
        """Predict where the editor saves an image pasted into a document."""
        prediction = runtime.predictor.predict(Path(req.document), req.image)
        return {
            "destination": str(prediction.destination_path),
            "is_directory": prediction.is_directory,
            "matched_pattern": prediction.matched_pattern,
            "variables": prediction.variables.as_dict(),
        }

    @app.post("/rewrite")  # type: ignore[misc]
    async def rewrite(req: RewriteRequest, auth: None = Depends(verify_token)) -> dict[str, Any]:
        """Replace a local image reference with its remote URL."""
        outcome = runtime.rewriter.replace_image_link(Path(req.document), Path(req.image), req.url)
        return {
            "success": outcome.success,
            "line": outcome.line,
            "column": outcome.column,
            "error": outcome.error,
        }

    @app.get("/images")  # type: ignore[misc]
    async def images(
        document: str = Query(..., description="Markdown document path"),
        auth: None = Depends(verify_token),
    ) -> list[dict[str, Any]]:
        """Local image links in a document."""
        path = Path(document)
        text = runtime.documents.read_text(path)
        if text is None:
            raise HTTPException(status_code=404, detail=f"Document {document} not found")

        return [
            {
                "path": img.image_path,
                "alt": img.alt_text,
                "line": img.start_line,
                "column": img.start_column,
                "end_line": img.end_line,
                "end_column": img.end_column,
                "absolute_path": str(img.absolute_path) if img.absolute_path else None,
                "exists": img.exists,
            }
            for img in find_local_images(text, path)
        ]

    return app


def generate_token() -> str:
    """Generate a random bearer token."""
    return secrets.token_urlsafe(32)
