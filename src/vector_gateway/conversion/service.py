import asyncio
import functools
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from .adapters import GhostscriptOutliner, StagingArea
from .errors import (
    RemoteDownloadFailure,
    RemoteJobFailed,
    RemotePollTimeout,
    RemoteServiceError,
    RemoteSubmissionFailure,
)
from .interfaces import ConversionJob, FallbackRenderer, RemoteJobGateway, RemoteJobStatus, StagedRequest
from .polling import RetryPolicy, poll_until

R = TypeVar("R")

logger = structlog.get_logger()

OUTLINED_FILENAME = "GCI_Vector_Outlined.pdf"
NOTICE_FILENAME = "CDR_Notice.pdf"
CONVERTED_FILENAME = "Converted_CDR.pdf"


def job_is_terminal(job: ConversionJob | None) -> bool:
    return job is not None and job.status in (RemoteJobStatus.SUCCESSFUL, RemoteJobStatus.FAILED)


def default_poll_policy(max_attempts: int = 20, interval_sec: float = 2.0) -> RetryPolicy[ConversionJob]:
    return RetryPolicy(max_attempts=max_attempts, interval_sec=interval_sec, is_terminal=job_is_terminal)


@dataclass(frozen=True)
class ConversionResult:
    path: Path
    filename: str


class ConversionService:
    """Core orchestration for both conversion backends.

    Framework-agnostic. The Ghostscript run goes to the event loop's default
    thread pool; remote HTTP calls go to a dedicated pool of `remote_workers`
    threads, and the waits between status polls are plain awaits, so slow
    remote jobs never starve local conversions. Artifacts are allocated from
    the request's StagedRequest; releasing them is the caller's job.
    """

    def __init__(
        self,
        staging: StagingArea,
        outliner: GhostscriptOutliner,
        fallback: FallbackRenderer,
        remote: RemoteJobGateway | None = None,
        *,
        poll_policy: RetryPolicy[ConversionJob] | None = None,
        remote_workers: int = 8,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._staging = staging
        self._outliner = outliner
        self._fallback = fallback
        self._remote = remote
        self._poll_policy = poll_policy or default_poll_policy()
        self._sleep = sleep
        self._clock = clock
        self._remote_pool = ThreadPoolExecutor(max_workers=remote_workers, thread_name_prefix="remote-io")

    @property
    def staging(self) -> StagingArea:
        return self._staging

    @property
    def remote_configured(self) -> bool:
        return self._remote is not None

    def close(self) -> None:
        self._remote_pool.shutdown(wait=False, cancel_futures=True)

    async def outline(self, staged: StagedRequest) -> ConversionResult:
        output_path = self._staging.new_artifact(staged, "outlined.pdf")
        await asyncio.to_thread(self._outliner.outline, staged.upload.path, output_path)
        logger.info("Outline conversion finished", token=staged.upload.token)
        return ConversionResult(path=output_path, filename=OUTLINED_FILENAME)

    async def convert_cdr(self, staged: StagedRequest) -> ConversionResult:
        if self._remote is None:
            fallback_path = self._staging.new_artifact(staged, "fallback.pdf")
            await asyncio.to_thread(self._fallback.render, fallback_path)
            logger.info("Remote converter not configured, returned notice", token=staged.upload.token)
            return ConversionResult(path=fallback_path, filename=NOTICE_FILENAME)
        output_path = await self._convert_remote(self._remote, staged)
        return ConversionResult(path=output_path, filename=CONVERTED_FILENAME)

    async def _call_remote(self, fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._remote_pool, functools.partial(fn, *args, **kwargs))

    async def _convert_remote(self, remote: RemoteJobGateway, staged: StagedRequest) -> Path:
        token = staged.upload.token
        try:
            job_id = await self._call_remote(
                remote.submit_job, staged.upload.path, "pdf", filename=staged.upload.filename
            )
        except RemoteServiceError as e:
            raise RemoteSubmissionFailure(str(e)) from e
        logger.info("Remote job submitted", token=token, job_id=job_id)

        async def query(timeout: float) -> ConversionJob | None:
            if timeout <= 0:
                return None
            try:
                # the worker thread may outlive the wait; its result is dropped
                return await asyncio.wait_for(self._call_remote(remote.job_status, job_id, timeout=timeout), timeout)
            except asyncio.TimeoutError:
                logger.warning("Remote status query timed out", job_id=job_id, timeout=timeout)
            except RemoteServiceError as e:
                logger.warning("Remote status query failed", job_id=job_id, error=str(e))
            return None

        started = self._clock()
        outcome = await poll_until(query, self._poll_policy, sleep=self._sleep, clock=self._clock)
        job = outcome.value
        if not outcome.terminal or job is None:
            raise RemotePollTimeout(
                f"job {job_id} not finished after {outcome.attempts} polls "
                f"({self._clock() - started:.1f}s)"
            )
        if job.status == RemoteJobStatus.FAILED:
            raise RemoteJobFailed(f"job {job_id} reported failed after {outcome.attempts} polls")
        logger.info("Remote job successful", job_id=job_id, attempts=outcome.attempts)

        output_path = self._staging.new_artifact(staged, "converted.pdf")
        if not job.target_file_id:
            raise RemoteDownloadFailure(f"job {job_id} succeeded without a target file")
        try:
            await self._call_remote(remote.download_file, job.target_file_id, output_path)
        except RemoteServiceError as e:
            raise RemoteDownloadFailure(str(e)) from e
        return output_path
