import io
import subprocess
import sys
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Iterable

import requests
import structlog
from reportlab.pdfgen import canvas

from .errors import RemoteServiceError, ToolInvocationFailure, UploadTooLarge
from .interfaces import (
    ConversionJob,
    FallbackRenderer,
    ProcessResult,
    ProcessRunner,
    RemoteJobGateway,
    RemoteJobStatus,
    StagedRequest,
    UploadedFile,
)

logger = structlog.get_logger()

CHUNK = 1024 * 1024


class StagingArea:
    """Per-request temporary files under a single base directory.

    Every upload gets a fresh uuid4 token as its file name and every artifact
    path is derived from it, so concurrent requests never share a path.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self._base = Path(base_dir).resolve()

    @property
    def base_dir(self) -> Path:
        return self._base

    def ensure(self) -> None:
        self._base.mkdir(parents=True, exist_ok=True)

    async def acquire(
        self,
        filename: str,
        reader: Callable[[int], Awaitable[bytes]],
        *,
        max_upload_mb: int,
    ) -> StagedRequest:
        """Stream an upload into the staging area and return its request handle."""
        input_path = self._base / uuid.uuid4().hex
        size_bytes = 0
        max_bytes = max_upload_mb * 1024 * 1024
        try:
            with input_path.open("wb") as f_out:
                while True:
                    chunk = await reader(CHUNK)
                    if not chunk:
                        break
                    size_bytes += len(chunk)
                    if size_bytes > max_bytes:
                        raise UploadTooLarge(max_upload_mb)
                    f_out.write(chunk)
        except BaseException:
            self.release({input_path})
            raise
        upload = UploadedFile(path=input_path, filename=filename or "upload", size_bytes=size_bytes)
        logger.info("Upload staged", token=upload.token, filename=upload.filename, size_bytes=size_bytes)
        return StagedRequest(upload=upload)

    def new_artifact(self, staged: StagedRequest, suffix: str) -> Path:
        path = Path(f"{staged.upload.path}_{suffix}")
        staged.artifacts.append(path)
        return path

    def release(self, paths: Iterable[Path]) -> None:
        for p in paths:
            try:
                p.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error("Failed to remove staged file", path=str(p), error=str(e))


class SubprocessRunner(ProcessRunner):
    def __init__(self, timeout_sec: float = 120.0) -> None:
        self._timeout = timeout_sec

    def run(self, args: list[str]) -> ProcessResult:
        result = subprocess.run(args, capture_output=True, text=True, timeout=self._timeout)
        return ProcessResult(returncode=result.returncode, stdout=result.stdout, stderr=result.stderr)


def default_ghostscript_binary(platform: str = sys.platform) -> str:
    return "gswin64c" if platform == "win32" else "gs"


class GhostscriptOutliner:
    """Converts every glyph of a PDF to vector paths with Ghostscript's pdfwrite."""

    def __init__(self, runner: ProcessRunner, binary: str | None = None) -> None:
        self._runner = runner
        self._binary = binary or default_ghostscript_binary()

    def command(self, input_path: Path, output_path: Path) -> list[str]:
        return [
            self._binary,
            "-o",
            str(output_path),
            "-sDEVICE=pdfwrite",
            "-dNoOutputFonts",
            str(input_path),
        ]

    def outline(self, input_path: Path, output_path: Path) -> Path:
        args = self.command(input_path, output_path)
        try:
            result = self._runner.run(args)
        except (OSError, subprocess.SubprocessError) as e:
            raise ToolInvocationFailure(f"could not run {self._binary}: {e}") from e
        if result.returncode != 0:
            raise ToolInvocationFailure(
                f"{self._binary} exited with {result.returncode}: {result.stderr.strip()[:500]}"
            )
        if not output_path.exists():
            raise ToolInvocationFailure(f"{self._binary} produced no output file")
        return output_path


class ZamzarClient(RemoteJobGateway):
    """Blocking client for a Zamzar-style job API (submit, poll, fetch)."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://sandbox.zamzar.com/v1",
        *,
        timeout_sec: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        # Key as username, empty password
        self._auth = (api_key, "")
        self._timeout = timeout_sec
        self._session = session or requests.Session()

    def submit_job(self, source_path: Path, target_format: str, filename: str | None = None) -> str:
        try:
            with source_path.open("rb") as fh:
                resp = self._session.post(
                    f"{self._base}/jobs",
                    files={"source_file": (filename or source_path.name, fh)},
                    data={"target_format": target_format},
                    auth=self._auth,
                    timeout=self._timeout,
                )
            resp.raise_for_status()
            return str(resp.json()["id"])
        except (requests.RequestException, OSError, ValueError, KeyError, TypeError) as e:
            raise RemoteServiceError(f"job submission failed: {e}") from e

    def job_status(self, job_id: str, timeout: float | None = None) -> ConversionJob:
        try:
            resp = self._session.get(
                f"{self._base}/jobs/{job_id}",
                auth=self._auth,
                timeout=self._timeout if timeout is None else timeout,
            )
            resp.raise_for_status()
            data = resp.json()
            status = str(data["status"])
            target_file_id = None
            if status == RemoteJobStatus.SUCCESSFUL:
                target_files = data.get("target_files") or []
                if target_files:
                    target_file_id = str(target_files[0]["id"])
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            raise RemoteServiceError(f"job status query failed: {e}") from e
        return ConversionJob(id=job_id, status=status, target_file_id=target_file_id)

    def download_file(self, file_id: str, dest_path: Path) -> None:
        try:
            with self._session.get(
                f"{self._base}/files/{file_id}/content",
                auth=self._auth,
                timeout=self._timeout,
                stream=True,
            ) as resp:
                resp.raise_for_status()
                with dest_path.open("wb") as f_out:
                    for chunk in resp.iter_content(chunk_size=CHUNK):
                        if chunk:
                            f_out.write(chunk)
        except (requests.RequestException, OSError) as e:
            raise RemoteServiceError(f"download of file {file_id} failed: {e}") from e


class ReportlabNoticeRenderer(FallbackRenderer):
    """Fixed one-page notice used when no remote credential is configured.

    Rendered in reportlab's invariant mode so repeated calls are byte-identical.
    """

    PAGE_SIZE = (600, 400)
    TITLE = "CDR Viewer API Not Configured"
    HINT = "Please set ZAMZAR_API_KEY in the gateway environment."

    def render(self, dest_path: Path) -> None:
        buf = io.BytesIO()
        c = canvas.Canvas(buf, pagesize=self.PAGE_SIZE, invariant=1)
        c.setTitle("CDR Notice")
        c.setFont("Helvetica-Bold", 24)
        c.setFillColorRGB(0.8, 0.1, 0.1)
        c.drawString(50, 300, self.TITLE)
        c.setFont("Helvetica", 14)
        c.setFillColorRGB(0, 0, 0)
        c.drawString(50, 250, self.HINT)
        c.showPage()
        c.save()
        dest_path.write_bytes(buf.getvalue())
