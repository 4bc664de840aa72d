from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol


class RemoteJobStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESSFUL = "successful"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadedFile:
    path: Path
    filename: str
    size_bytes: int

    @property
    def token(self) -> str:
        return self.path.name


@dataclass
class StagedRequest:
    upload: UploadedFile
    artifacts: list[Path] = field(default_factory=list)

    def paths(self) -> set[Path]:
        return {self.upload.path, *self.artifacts}


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


@dataclass(frozen=True)
class ConversionJob:
    id: str
    status: str
    target_file_id: str | None = None


class ProcessRunner(Protocol):
    def run(self, args: list[str]) -> ProcessResult:
        """Run a command to completion and return its exit status and output.
        Raises OSError when the executable cannot be spawned.
        """


class RemoteJobGateway(Protocol):
    def submit_job(self, source_path: Path, target_format: str, filename: str | None = None) -> str:
        ...

    def job_status(self, job_id: str, timeout: float | None = None) -> ConversionJob:
        """Query a job once; `timeout` overrides the client default for this call."""

    def download_file(self, file_id: str, dest_path: Path) -> None:
        ...


class FallbackRenderer(Protocol):
    def render(self, dest_path: Path) -> None:
        ...
