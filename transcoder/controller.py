"""
Runs one upload end to end: validate, prepare the output layout, run
ffmpeg, publish the manifest, and hand back a ``JobResult``.

Every per-job error is turned into a failed ``JobResult`` here; callers never
see an exception from ``submit``. A process-wide semaphore bounds how many
ffmpeg processes run at once.
"""
import enum
import logging
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from django.conf import settings
from django.core.signals import setting_changed
from django.dispatch import receiver

from . import ffmpeg
from .exceptions import (
    CapacityError,
    LayoutConflictError,
    StorageError,
    TranscodeFailure,
    TranscoderError,
    ValidationError,
)
from .layout import OutputLayout, validate_job_id
from .s3 import upload_hls_asset

logger = logging.getLogger(__name__)


class JobState(str, enum.Enum):
    CREATED = "CREATED"
    PREPARING = "PREPARING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


_TRANSITIONS = {
    JobState.CREATED: {JobState.PREPARING, JobState.FAILED},
    JobState.PREPARING: {JobState.RUNNING, JobState.FAILED},
    JobState.RUNNING: {JobState.SUCCEEDED, JobState.FAILED},
    JobState.SUCCEEDED: set(),
    JobState.FAILED: set(),
}

_FAILURE_LOG_LEVELS = {
    "validation": logging.INFO,
    "transcode": logging.WARNING,
    "capacity": logging.WARNING,
}


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Job:
    input_location: Path
    job_id: str = field(default_factory=new_job_id)
    output_directory: Path | None = None
    state: JobState = JobState.CREATED
    exit_diagnostic: str = ""

    def advance(self, state: JobState):
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal job transition {self.state.value} -> {state.value}")
        logger.debug("Job %s: %s -> %s", self.job_id, self.state.value, state.value)
        self.state = state


@dataclass(frozen=True)
class JobResult:
    job_id: str
    state: JobState
    locator: str | None = None
    diagnostic: str | None = None
    error_kind: str | None = None

    @property
    def success(self) -> bool:
        return self.state is JobState.SUCCEEDED

    def as_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "state": self.state.value,
            "success": self.success,
            "locator": self.locator,
            "diagnostic": self.diagnostic,
            "error_kind": self.error_kind,
        }


class JobController:
    def __init__(
        self,
        layout: OutputLayout,
        *,
        ffmpeg_bin: str = "ffmpeg",
        default_options: ffmpeg.TranscodeOptions | None = None,
        max_concurrent_jobs: int = 2,
        queue_timeout: float | None = 30,
        job_timeout: float | None = None,
        diagnostic_limit: int = 4000,
        retain_failed_output: bool = True,
        delete_input: bool = False,
        mirror=None,
    ):
        if max_concurrent_jobs < 1:
            raise ValueError("max_concurrent_jobs must be at least 1")
        self.layout = layout
        self.ffmpeg_bin = ffmpeg_bin
        self.default_options = default_options or ffmpeg.TranscodeOptions()
        self.max_concurrent_jobs = max_concurrent_jobs
        self.queue_timeout = queue_timeout
        self.job_timeout = job_timeout
        self.diagnostic_limit = diagnostic_limit
        self.retain_failed_output = retain_failed_output
        self.delete_input = delete_input
        # called with the PreparedLayout after verification, before publishing
        self.mirror = mirror

        self._slots = threading.BoundedSemaphore(max_concurrent_jobs)
        self._active: set[str] = set()
        self._active_lock = threading.Lock()

    def submit(self, input_location, options=None, job_id=None, cancel_event=None) -> JobResult:
        """
        Transcode ``input_location`` to HLS and report the result.

        Blocks the calling thread until this job's ffmpeg exits (or the job
        is rejected); other jobs run on their own threads.
        """
        job = Job(Path(input_location), job_id=job_id or new_job_id())
        logger.info("Job %s created for %s", job.job_id, job.input_location.name)
        try:
            try:
                validate_job_id(job.job_id)
                options = ffmpeg.TranscodeOptions.from_overrides(options, base=self.default_options)
                self._check_input(job.input_location)
            except ValidationError as e:
                return self._fail(job, e)

            if not self._slots.acquire(timeout=self.queue_timeout):
                return self._fail(job, CapacityError(
                    f"All {self.max_concurrent_jobs} transcode slots are busy, try again later"
                ))
            try:
                self._claim(job.job_id)
            except StorageError as e:
                self._slots.release()
                return self._fail(job, e)

            try:
                return self._run(job, options, cancel_event)
            finally:
                self._release(job.job_id)
                self._slots.release()
        except Exception:
            logger.exception("Job %s crashed", job.job_id)
            return self._fail(job, TranscoderError("internal error while processing the job"))
        finally:
            if self.delete_input:
                self._remove_input(job)

    def _run(self, job: Job, options: ffmpeg.TranscodeOptions, cancel_event) -> JobResult:
        job.advance(JobState.PREPARING)
        try:
            prepared = self.layout.prepare(job.job_id)
        except TranscoderError as e:
            return self._fail(job, e)
        job.output_directory = prepared.output_directory

        job.advance(JobState.RUNNING)
        try:
            outcome = ffmpeg.transcode(
                job.input_location,
                prepared.staging_manifest_path,
                prepared.segment_pattern,
                options,
                ffmpeg_bin=self.ffmpeg_bin,
                timeout=self.job_timeout,
                cancel_event=cancel_event,
                diagnostic_limit=self.diagnostic_limit,
            )
            if not outcome.succeeded:
                if outcome.terminated:
                    raise TranscodeFailure(outcome.diagnostic)
                raise TranscodeFailure(
                    f"ffmpeg exited with code {outcome.exit_status}\n{outcome.diagnostic}".rstrip()
                )
            if self.mirror is not None:
                self.layout.verify_staged_manifest(prepared)
                self.mirror(prepared)
            locator = self.layout.publish(prepared)
        except TranscoderError as e:
            self.layout.discard(prepared, remove_output=not self.retain_failed_output)
            return self._fail(job, e)
        except Exception:
            self.layout.discard(prepared, remove_output=not self.retain_failed_output)
            raise

        job.advance(JobState.SUCCEEDED)
        logger.info("Job %s succeeded in %.1fs: %s", job.job_id, outcome.elapsed, locator)
        return JobResult(job.job_id, job.state, locator=locator)

    def _fail(self, job: Job, error: TranscoderError) -> JobResult:
        if job.state not in (JobState.SUCCEEDED, JobState.FAILED):
            job.advance(JobState.FAILED)
        job.exit_diagnostic = str(error)

        level = _FAILURE_LOG_LEVELS.get(error.error_kind, logging.ERROR)
        if isinstance(error, LayoutConflictError):
            level = logging.CRITICAL
        summary = job.exit_diagnostic.splitlines()[0] if job.exit_diagnostic else ""
        logger.log(level, "Job %s failed (%s): %s", job.job_id, error.error_kind, summary)

        return JobResult(job.job_id, job.state, diagnostic=job.exit_diagnostic, error_kind=error.error_kind)

    def _claim(self, job_id: str):
        with self._active_lock:
            if job_id in self._active:
                logger.critical("Job id collision: %s is already running", job_id)
                raise StorageError(f"Job id collision: {job_id} is already running")
            self._active.add(job_id)

    def _release(self, job_id: str):
        with self._active_lock:
            self._active.discard(job_id)

    @staticmethod
    def _check_input(path: Path):
        if not path.is_file():
            raise ValidationError(f"Input file not found: {path.name}")
        if path.stat().st_size == 0:
            raise ValidationError("Input file is empty")

    @staticmethod
    def _remove_input(job: Job):
        try:
            job.input_location.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not delete input %s of job %s", job.input_location, job.job_id, exc_info=True)


_controller = None
_controller_lock = threading.Lock()


def controller_from_settings() -> JobController:
    """The process-wide controller, built once from ``HLS_*`` settings."""
    global _controller
    controller = _controller
    if controller is None:
        with _controller_lock:
            if _controller is None:
                _controller = _build_controller()
            controller = _controller
    return controller


def reset_controller():
    global _controller
    with _controller_lock:
        _controller = None


def _build_controller() -> JobController:
    layout = OutputLayout(settings.HLS_ROOT, url_prefix=settings.HLS_URL_PREFIX)
    return JobController(
        layout,
        ffmpeg_bin=settings.FFMPEG_BIN,
        default_options=ffmpeg.TranscodeOptions.from_overrides(settings.HLS_DEFAULT_OPTIONS),
        max_concurrent_jobs=settings.HLS_MAX_CONCURRENT_JOBS,
        queue_timeout=settings.HLS_QUEUE_TIMEOUT_SECONDS,
        job_timeout=settings.HLS_JOB_TIMEOUT_SECONDS or None,
        diagnostic_limit=settings.HLS_DIAGNOSTIC_LIMIT,
        retain_failed_output=settings.HLS_RETAIN_FAILED_OUTPUT,
        delete_input=settings.HLS_DELETE_INPUT,
        mirror=upload_hls_asset if settings.HLS_S3_MIRROR else None,
    )


@receiver(setting_changed)
def _reset_controller(sender, setting, **kwargs):
    if setting.startswith(("HLS_", "FFMPEG_", "S3_")):
        reset_controller()
