"""
Domain layer for the conversion gateway.
Provides the staging area, backend adapters (Ghostscript, remote job API,
fallback notice) and a service orchestrating them, so the HTTP layer only
deals with uploads and responses.
"""

from .adapters import (
    GhostscriptOutliner,
    ReportlabNoticeRenderer,
    StagingArea,
    SubprocessRunner,
    ZamzarClient,
)
from .errors import ConversionError
from .interfaces import ConversionJob, RemoteJobStatus, StagedRequest, UploadedFile
from .polling import RetryPolicy, poll_until
from .service import ConversionResult, ConversionService, default_poll_policy
