import os
from pathlib import Path
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, File, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, PlainTextResponse
from starlette.types import Receive, Scope, Send

from vector_gateway.conversion import (
    ConversionError,
    ConversionResult,
    ConversionService,
    GhostscriptOutliner,
    ReportlabNoticeRenderer,
    StagedRequest,
    StagingArea,
    SubprocessRunner,
    ZamzarClient,
    default_poll_policy,
)
from vector_gateway.conversion.errors import CDR_FAILED_MESSAGE, OUTLINE_FAILED_MESSAGE, MissingUpload
from vector_gateway.logging_config import setup_logging

logger = structlog.get_logger()

app = FastAPI(
    title="Vector Conversion Gateway",
    version=os.getenv("GATEWAY_VERSION", "0.1.0"),
    description=(
        "Converts uploaded documents to print-ready PDF: outlines PDF text "
        "with Ghostscript and converts CorelDRAW files through a remote job API."
    ),
)

# Global configuration defaults
STAGING_DIR = Path(os.getenv("STAGING_DIR", "./uploads")).resolve()
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "100"))
ZAMZAR_API_KEY = os.getenv("ZAMZAR_API_KEY", "").strip()
ZAMZAR_BASE_URL = os.getenv("ZAMZAR_BASE_URL", "https://sandbox.zamzar.com/v1")
REMOTE_TIMEOUT_SEC = float(os.getenv("REMOTE_TIMEOUT_SEC", "60"))
POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "20"))
POLL_INTERVAL_SEC = float(os.getenv("POLL_INTERVAL_SEC", "2"))
REMOTE_WORKERS = int(os.getenv("REMOTE_WORKERS", "8"))
GS_BINARY = os.getenv("GS_BINARY") or None
GS_TIMEOUT_SEC = float(os.getenv("GS_TIMEOUT_SEC", "120"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "").lower() in {"1", "true", "yes", "on"}
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Value shipped in sample configs; treated the same as no key at all
PLACEHOLDER_API_KEY = "YOUR_ZAMZAR_API_KEY_HERE"

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

SERVICE: ConversionService | None = None


def remote_key_configured(api_key: str) -> bool:
    return bool(api_key) and api_key != PLACEHOLDER_API_KEY


def build_service() -> ConversionService:
    remote = None
    if remote_key_configured(ZAMZAR_API_KEY):
        remote = ZamzarClient(ZAMZAR_API_KEY, ZAMZAR_BASE_URL, timeout_sec=REMOTE_TIMEOUT_SEC)
    return ConversionService(
        staging=StagingArea(STAGING_DIR),
        outliner=GhostscriptOutliner(SubprocessRunner(timeout_sec=GS_TIMEOUT_SEC), binary=GS_BINARY),
        fallback=ReportlabNoticeRenderer(),
        remote=remote,
        poll_policy=default_poll_policy(POLL_MAX_ATTEMPTS, POLL_INTERVAL_SEC),
        remote_workers=REMOTE_WORKERS,
    )


class ArtifactResponse(FileResponse):
    """Streams a converted PDF as an attachment, then releases the request's files.

    Never raises: errors while sending are logged and the response is dropped.
    """

    def __init__(self, result: ConversionResult, staged: StagedRequest, staging: StagingArea) -> None:
        super().__init__(result.path, media_type="application/pdf", filename=result.filename)
        self._staged = staged
        self._staging = staging

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except Exception as e:
            logger.error("Streaming artifact failed", token=self._staged.upload.token, error=str(e))
        finally:
            self._staging.release(self._staged.paths())


def _failure_response(exc: ConversionError, staged: StagedRequest | None, staging: StagingArea) -> PlainTextResponse:
    try:
        logger.error(
            "Conversion request failed",
            kind=exc.kind,
            status_code=exc.status_code,
            token=staged.upload.token if staged else None,
            error=str(exc),
        )
    finally:
        if staged is not None:
            staging.release(staged.paths())
    return PlainTextResponse(exc.public_message, status_code=exc.status_code)


async def _handle(
    file: UploadFile | None,
    convert: Callable[[StagedRequest], Awaitable[ConversionResult]],
    staging: StagingArea,
    unexpected_message: str,
) -> FileResponse | PlainTextResponse:
    staged: StagedRequest | None = None
    try:
        if file is None:
            raise MissingUpload("request has no 'file' part")
        staged = await staging.acquire(file.filename or "upload", file.read, max_upload_mb=MAX_UPLOAD_MB)
        result = await convert(staged)
    except ConversionError as e:
        return _failure_response(e, staged, staging)
    except Exception as e:
        logger.exception("Unexpected conversion error", error=str(e))
        unexpected = ConversionError(str(e))
        unexpected.public_message = unexpected_message
        return _failure_response(unexpected, staged, staging)
    return ArtifactResponse(result, staged, staging)


@app.on_event("startup")
async def _startup() -> None:
    setup_logging(LOG_LEVEL, json_logs=LOG_JSON)
    global SERVICE
    if SERVICE is None:
        SERVICE = build_service()
    # Ensure staging directory
    SERVICE.staging.ensure()
    logger.info(
        "Gateway started",
        staging_dir=str(SERVICE.staging.base_dir),
        remote="configured" if SERVICE.remote_configured else "fallback",
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    global SERVICE
    if SERVICE is not None:
        SERVICE.close()


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint; also reports which CDR mode is active."""
    if SERVICE is not None:
        configured = SERVICE.remote_configured
    else:
        configured = remote_key_configured(ZAMZAR_API_KEY)
    return {"status": "ok", "remote": "configured" if configured else "fallback"}


@app.post("/api/outline", response_model=None)
async def outline_pdf(file: UploadFile | None = File(None)) -> FileResponse | PlainTextResponse:
    """Outline every font in an uploaded PDF and return it as a vector-only PDF.

    Accepts multipart/form-data with a part named "file".
    """
    global SERVICE
    assert SERVICE is not None
    return await _handle(file, SERVICE.outline, SERVICE.staging, OUTLINE_FAILED_MESSAGE)


@app.post("/api/cdr-to-pdf", response_model=None)
async def cdr_to_pdf(file: UploadFile | None = File(None)) -> FileResponse | PlainTextResponse:
    """Convert an uploaded CorelDRAW document to PDF.

    Without a configured API key a fixed notice PDF is returned instead.
    """
    global SERVICE
    assert SERVICE is not None
    return await _handle(file, SERVICE.convert_cdr, SERVICE.staging, CDR_FAILED_MESSAGE)


def run() -> None:
    """Run the gateway with uvicorn.

    Exposes the app at host:port (default 0.0.0.0:3000). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    reload = os.getenv("RELOAD", "false").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("vector_gateway.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
