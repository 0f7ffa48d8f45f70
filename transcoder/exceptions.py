"""
Error taxonomy for the transcoding pipeline.

Every per-job error carries an ``error_kind`` that the job controller copies
into the result it hands back to the gateway, which maps it onto an HTTP
status. None of these are meant to escape the controller.
"""


class TranscoderError(Exception):
    """Base class for transcoding pipeline errors."""

    error_kind = "internal"


class ValidationError(TranscoderError):
    """Bad or missing input: unknown option, empty file, malformed job id."""

    error_kind = "validation"


class StorageError(TranscoderError):
    """The output location could not be created or written."""

    error_kind = "storage"


class LayoutConflictError(StorageError):
    """A published manifest already exists for this job id."""


class TranscodeFailure(TranscoderError):
    """
    ffmpeg exited non-zero, was terminated, or left an unusable manifest.

    This is the expected outcome for corrupt or unsupported media, not an
    internal fault.
    """

    error_kind = "transcode"


class ProcessLaunchError(TranscoderError):
    """The ffmpeg binary is missing or cannot be executed."""

    error_kind = "launch"


class CapacityError(TranscoderError):
    """No transcode slot became free within the admission timeout."""

    error_kind = "capacity"
