"""CORS for the browser client."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campusnet.config import Settings
from campusnet.middleware.request_id import REQUEST_ID_HEADER

# Media uploads send the file body with its own Content-Type.
ALLOWED_HEADERS = ["Authorization", "Content-Type", REQUEST_ID_HEADER]


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the configured web origins, plus any matching ``cors_origin_regex`` (preview deploys)."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_origin_regex=settings.cors_origin_regex,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=ALLOWED_HEADERS,
        expose_headers=[REQUEST_ID_HEADER],
    )
