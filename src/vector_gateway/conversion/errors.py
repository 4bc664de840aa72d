"""Failure taxonomy for the conversion pipeline.

Every error carries the HTTP status and the caller-facing message it maps to.
The exception message itself is internal and only ever logged.
"""

OUTLINE_FAILED_MESSAGE = "Error converting text to outline. Is Ghostscript installed?"
CDR_FAILED_MESSAGE = "CDR Conversion failed."


class ConversionError(Exception):
    kind = "ConversionFailure"
    status_code = 500
    public_message = "Conversion failed."


class MissingUpload(ConversionError):
    kind = "MissingUpload"
    status_code = 400
    public_message = "No file uploaded."


class UploadTooLarge(ConversionError):
    kind = "UploadTooLarge"
    status_code = 413

    def __init__(self, max_upload_mb: int) -> None:
        super().__init__(f"upload exceeds {max_upload_mb} MB")
        self.public_message = f"Upload exceeds {max_upload_mb} MB."


class ToolInvocationFailure(ConversionError):
    kind = "ToolInvocationFailure"
    public_message = OUTLINE_FAILED_MESSAGE


class RemoteSubmissionFailure(ConversionError):
    kind = "RemoteSubmissionFailure"
    public_message = CDR_FAILED_MESSAGE


class RemotePollTimeout(ConversionError):
    kind = "RemotePollTimeout"
    public_message = CDR_FAILED_MESSAGE


class RemoteJobFailed(ConversionError):
    kind = "RemoteJobFailed"
    public_message = CDR_FAILED_MESSAGE


class RemoteDownloadFailure(ConversionError):
    kind = "RemoteDownloadFailure"
    public_message = CDR_FAILED_MESSAGE


class RemoteServiceError(Exception):
    """Transport or protocol problem talking to the remote conversion API."""
