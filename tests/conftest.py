"""Shared fixtures and fakes for gateway tests."""

import asyncio
import io
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from vector_gateway import webapi
from vector_gateway.conversion import (
    ConversionJob,
    ConversionService,
    GhostscriptOutliner,
    ReportlabNoticeRenderer,
    StagingArea,
    default_poll_policy,
)
from vector_gateway.conversion.errors import RemoteServiceError
from vector_gateway.conversion.interfaces import ProcessResult, RemoteJobStatus


class FakeRunner:
    """Stands in for the Ghostscript subprocess."""

    def __init__(self, returncode: int = 0, missing: bool = False, write_output: bool = True) -> None:
        self.returncode = returncode
        self.missing = missing
        self.write_output = write_output
        self.calls: list[list[str]] = []

    def run(self, args: list[str]) -> ProcessResult:
        self.calls.append(args)
        if self.missing:
            raise FileNotFoundError(2, "No such file or directory", args[0])
        if self.returncode == 0 and self.write_output:
            out = Path(args[args.index("-o") + 1])
            out.write_bytes(b"%PDF-1.7\n% outlined\n%%EOF\n")
        return ProcessResult(returncode=self.returncode, stdout="", stderr="" if self.returncode == 0 else "Unrecoverable error")


class FakeRemote:
    """Scripted remote job API. `statuses` are returned in order, the last one repeats."""

    def __init__(
        self,
        statuses: list[str],
        *,
        submit_error: bool = False,
        download_error: bool = False,
        status_errors: int = 0,
        content: bytes = b"%PDF-1.4\n% converted\n%%EOF\n",
    ) -> None:
        self.statuses = statuses
        self.submit_error = submit_error
        self.download_error = download_error
        self.status_errors = status_errors
        self.content = content
        self.submitted: list[tuple[Path, str, str | None]] = []
        self.status_calls = 0
        self.timeouts: list[float | None] = []
        self.downloads: list[str] = []

    def submit_job(self, source_path: Path, target_format: str, filename: str | None = None) -> str:
        if self.submit_error:
            raise RemoteServiceError("401 Unauthorized")
        self.submitted.append((source_path, target_format, filename))
        return "job-42"

    def job_status(self, job_id: str, timeout: float | None = None) -> ConversionJob:
        self.timeouts.append(timeout)
        self.status_calls += 1
        if self.status_calls <= self.status_errors:
            raise RemoteServiceError("connection reset")
        idx = min(self.status_calls - self.status_errors, len(self.statuses)) - 1
        status = self.statuses[idx]
        target = "file-7" if status == RemoteJobStatus.SUCCESSFUL else None
        return ConversionJob(id=job_id, status=status, target_file_id=target)

    def download_file(self, file_id: str, dest_path: Path) -> None:
        self.downloads.append(file_id)
        if self.download_error:
            dest_path.write_bytes(b"%PDF-1.4\npartial")
            raise RemoteServiceError("stream interrupted")
        dest_path.write_bytes(self.content)


class FakeClock:
    """Monotonic clock that only moves when `sleep` is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self.calls: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.now += seconds


def stage(staging: StagingArea, data: bytes, filename: str = "input.pdf", max_upload_mb: int = 10):
    buf = io.BytesIO(data)

    async def reader(n: int) -> bytes:
        return buf.read(n)

    return asyncio.run(staging.acquire(filename, reader, max_upload_mb=max_upload_mb))


@pytest.fixture
def staging_dir(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture
def staging(staging_dir: Path) -> StagingArea:
    area = StagingArea(staging_dir)
    area.ensure()
    return area


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_service(staging, runner, remote=None, clock=None, max_attempts: int = 20, interval_sec: float = 2.0):
    clock = clock or FakeClock()
    return ConversionService(
        staging=staging,
        outliner=GhostscriptOutliner(runner, binary="gs"),
        fallback=ReportlabNoticeRenderer(),
        remote=remote,
        poll_policy=default_poll_policy(max_attempts, interval_sec),
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def make_client(staging, clock):
    """Build a TestClient around a service wired with the given fakes."""
    clients = []

    def _make(runner=None, remote=None):
        webapi.SERVICE = make_service(staging, runner or FakeRunner(), remote, clock)
        client = TestClient(webapi.app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for c in clients:
        c.__exit__(None, None, None)
    webapi.SERVICE = None
