"""
Runs ffmpeg to package one input file as single-rendition VOD HLS.

One call launches exactly one process. Its stderr is drained on a separate
thread into the ``transcoder.ffmpeg`` logger and a bounded tail buffer, so a
chatty encoder can never block on a full pipe. The calling thread only waits
for its own process, with an optional wall-clock timeout and cancel event.
"""
import collections
import logging
import re
import shlex
import subprocess
import threading
import time
from dataclasses import asdict, dataclass, fields, replace

from .exceptions import ProcessLaunchError, ValidationError

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.2
TERMINATE_GRACE_SECONDS = 5.0
READER_JOIN_SECONDS = 5.0
TERMINATED_MARKER = "terminated"

CODEC_NAME_RE = re.compile(r"^[A-Za-z0-9_.]+$")

# Accept the camelCase names used by the HTTP API as well as field names
OPTION_ALIASES = {
    "segmentDurationSeconds": "segment_duration_seconds",
    "segment_duration": "segment_duration_seconds",
    "videoCodec": "video_codec",
    "audioCodec": "audio_codec",
    "videoProfile": "video_profile",
    "constantRateFactor": "constant_rate_factor",
    "crf": "constant_rate_factor",
    "audioBitrate": "audio_bitrate_kbps",
    "audio_bitrate": "audio_bitrate_kbps",
    "playlistType": "playlist_type",
}


@dataclass(frozen=True)
class TranscodeOptions:
    segment_duration_seconds: int = 6
    video_codec: str = "h264"
    audio_codec: str = "aac"
    video_profile: str = "main"
    constant_rate_factor: int = 20
    audio_bitrate_kbps: int = 128
    playlist_type: str = "vod"

    def __post_init__(self):
        for name in ("segment_duration_seconds", "constant_rate_factor", "audio_bitrate_kbps"):
            value = getattr(self, name)
            if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
                raise ValidationError(f"{name} must be an integer, got {value!r}")
            try:
                object.__setattr__(self, name, int(value))
            except (TypeError, ValueError):
                raise ValidationError(f"{name} must be an integer, got {value!r}")

        if self.segment_duration_seconds <= 0:
            raise ValidationError("segment_duration_seconds must be positive")
        if not 0 <= self.constant_rate_factor <= 51:
            raise ValidationError("constant_rate_factor must be between 0 and 51")
        if self.audio_bitrate_kbps <= 0:
            raise ValidationError("audio_bitrate_kbps must be positive")

        for name in ("video_codec", "audio_codec", "video_profile"):
            value = getattr(self, name)
            if not isinstance(value, str) or not CODEC_NAME_RE.match(value):
                raise ValidationError(f"{name} is not a valid ffmpeg name: {value!r}")

        if self.playlist_type != "vod":
            raise ValidationError("Only 'vod' playlists are supported")

    @classmethod
    def from_overrides(cls, overrides=None, base=None) -> "TranscodeOptions":
        """Apply a mapping of per-request overrides on top of ``base`` (or the defaults)."""
        options = base or cls()
        if not overrides:
            return options

        known = {f.name for f in fields(cls)}
        changes = {}
        for key, value in overrides.items():
            name = OPTION_ALIASES.get(key, key)
            if name not in known:
                raise ValidationError(f"Unknown transcode option: {key}")
            changes[name] = value
        return replace(options, **changes)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TerminalOutcome:
    exit_status: int | None
    diagnostic: str
    terminated: bool = False
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0 and not self.terminated


def build_hls_command(
    ffmpeg_bin: str,
    input_path,
    manifest_path,
    segment_pattern: str,
    options: TranscodeOptions,
) -> list[str]:
    """Build the ffmpeg argv; ``-f hls`` lets the playlist use a staging name.

    Segments can only be cut on keyframes, so one is forced at every
    segment boundary.
    """
    return [
        str(ffmpeg_bin),
        "-hide_banner",
        "-nostdin",
        "-y",
        "-i", str(input_path),
        "-c:v", options.video_codec,
        "-profile:v", options.video_profile,
        "-crf", str(options.constant_rate_factor),
        "-c:a", options.audio_codec,
        "-b:a", f"{options.audio_bitrate_kbps}k",
        "-force_key_frames", f"expr:gte(t,n_forced*{options.segment_duration_seconds})",
        "-hls_time", str(options.segment_duration_seconds),
        "-hls_playlist_type", options.playlist_type,
        "-hls_segment_filename", str(segment_pattern),
        "-f", "hls",
        str(manifest_path),
    ]


class _DiagnosticTail:
    """Keeps the last ``limit`` characters of ffmpeg's stderr."""

    def __init__(self, limit: int):
        self.limit = max(1, limit)
        self._lines = collections.deque()
        self._size = 0

    def append(self, line: str):
        self._lines.append(line)
        self._size += len(line) + 1
        while self._size > self.limit and len(self._lines) > 1:
            self._size -= len(self._lines.popleft()) + 1

    def text(self) -> str:
        return "\n".join(self._lines)[-self.limit:]


def _drain_stderr(stream, tail: _DiagnosticTail, pid: int):
    with stream:
        for line in stream:
            line = line.rstrip()
            if line:
                tail.append(line)
                logger.debug("[ffmpeg %s] %s", pid, line)


def _terminate(process: subprocess.Popen):
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        logger.warning("ffmpeg pid %s ignored SIGTERM, killing", process.pid)
        process.kill()
        process.wait()


def _wait(process: subprocess.Popen, timeout: float | None, cancel_event: threading.Event | None) -> str | None:
    """Block until the process exits; return why it was stopped, or None."""
    deadline = time.monotonic() + timeout if timeout else None
    while True:
        try:
            process.wait(timeout=POLL_INTERVAL_SECONDS)
            return None
        except subprocess.TimeoutExpired:
            pass

        if cancel_event is not None and cancel_event.is_set():
            reason = "cancelled"
        elif deadline is not None and time.monotonic() >= deadline:
            reason = f"timed out after {timeout:g}s"
        else:
            continue

        _terminate(process)
        return reason


def transcode(
    input_path,
    manifest_path,
    segment_pattern: str,
    options: TranscodeOptions | None = None,
    *,
    ffmpeg_bin: str = "ffmpeg",
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
    diagnostic_limit: int = 4000,
) -> TerminalOutcome:
    """
    Run one ffmpeg HLS packaging pass and report how it ended.

    A non-zero exit is returned as an outcome, not raised: it is what bad
    input looks like. Only a binary that cannot be started raises
    ``ProcessLaunchError``. Timeouts, cancellation and signals yield an
    outcome with ``terminated=True`` whose diagnostic starts with
    ``"terminated"``; the process is always reaped before returning.
    """
    options = options or TranscodeOptions()
    cmd = build_hls_command(ffmpeg_bin, input_path, manifest_path, segment_pattern, options)
    logger.info("Launching ffmpeg: %s", shlex.join(cmd))

    started = time.monotonic()
    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        raise ProcessLaunchError(f"Cannot execute {ffmpeg_bin}: {e}") from e

    tail = _DiagnosticTail(diagnostic_limit)
    reader = threading.Thread(
        target=_drain_stderr,
        args=(process.stderr, tail, process.pid),
        name=f"ffmpeg-stderr-{process.pid}",
        daemon=True,
    )
    reader.start()

    reason = _wait(process, timeout, cancel_event)
    reader.join(timeout=READER_JOIN_SECONDS)
    elapsed = time.monotonic() - started

    if reason is None and process.returncode < 0:
        reason = f"killed by signal {-process.returncode}"

    diagnostic = tail.text()
    if reason is not None:
        logger.warning("ffmpeg pid %s %s: %s", process.pid, TERMINATED_MARKER, reason)
        marker = f"{TERMINATED_MARKER}: {reason}"
        return TerminalOutcome(
            exit_status=process.returncode,
            diagnostic=f"{marker}\n{diagnostic}" if diagnostic else marker,
            terminated=True,
            elapsed=elapsed,
        )

    if process.returncode == 0:
        logger.info("ffmpeg pid %s finished in %.1fs", process.pid, elapsed)
    else:
        logger.warning("ffmpeg pid %s exited with code %s after %.1fs", process.pid, process.returncode, elapsed)
    return TerminalOutcome(exit_status=process.returncode, diagnostic=diagnostic, elapsed=elapsed)


def probe_ffmpeg(ffmpeg_bin: str = "ffmpeg", timeout: float = 10) -> str:
    """Return ffmpeg's version banner, or raise ProcessLaunchError if it cannot run."""
    try:
        result = subprocess.run(
            [str(ffmpeg_bin), "-version"],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise ProcessLaunchError(f"Cannot execute {ffmpeg_bin}: {e}") from e

    if result.returncode != 0:
        raise ProcessLaunchError(f"{ffmpeg_bin} -version exited with code {result.returncode}")
    lines = (result.stdout or "").splitlines()
    return lines[0].strip() if lines else str(ffmpeg_bin)
