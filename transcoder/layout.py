"""
On-disk layout of HLS outputs.

Each job owns ``<root>/<job_id>/``. ffmpeg writes segments straight into that
directory but writes its playlist to a hidden staging name; the playlist is
only renamed to ``index.m3u8`` once the run succeeded and every segment it
lists is present, so a half-written manifest is never reachable through the
public locator.
"""
import logging
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from .exceptions import LayoutConflictError, StorageError, TranscodeFailure, ValidationError

logger = logging.getLogger(__name__)

JOB_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
ASSET_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+\.(ts|m4s|mp4)$")
SEGMENT_INDEX_RE = re.compile(r"(\d+)\.[A-Za-z0-9]+$")

MANIFEST_NAME = "index.m3u8"
SEGMENT_TEMPLATE = "segment_%03d.ts"


@dataclass(frozen=True)
class PreparedLayout:
    job_id: str
    output_directory: Path
    manifest_path: Path
    staging_manifest_path: Path
    segment_pattern: str


def validate_job_id(job_id: str) -> str:
    if not job_id or not JOB_ID_RE.match(job_id):
        raise ValidationError(f"Invalid job id: {job_id!r}")
    return job_id


def segment_index(name: str) -> int:
    """Sequence number of a segment file, e.g. ``segment_012.ts`` -> 12."""
    match = SEGMENT_INDEX_RE.search(name)
    return int(match.group(1)) if match else -1


def read_segment_names(manifest: Path) -> list[str]:
    """Return the segment URIs listed in an HLS media playlist, in order."""
    text = manifest.read_text(encoding="utf-8", errors="replace")
    return [line.strip() for line in text.splitlines() if line.strip() and not line.startswith("#")]


class OutputLayout:
    """
    Computes and creates per-job output directories under ``root``.

    All paths derive from the job id and the constructor arguments, so two
    jobs can never share a directory or a locator.
    """

    def __init__(
        self,
        root,
        url_prefix: str = "/hls",
        manifest_name: str = MANIFEST_NAME,
        segment_template: str = SEGMENT_TEMPLATE,
        dir_mode: int = 0o755,
    ):
        self.root = Path(root)
        self.url_prefix = "/" + url_prefix.strip("/") if url_prefix.strip("/") else ""
        self.manifest_name = manifest_name
        self.segment_template = segment_template
        self.dir_mode = dir_mode

    def directory_for(self, job_id: str) -> Path:
        return self.root / validate_job_id(job_id)

    def locator(self, job_id: str) -> str:
        return f"{self.url_prefix}/{validate_job_id(job_id)}/manifest"

    def prepare(self, job_id: str) -> PreparedLayout:
        """
        Create the output directory for ``job_id`` and return its paths.

        Safe to call twice for the same job; refuses to touch a directory
        that already holds a non-empty published manifest.
        """
        out_dir = self.directory_for(job_id)
        layout = PreparedLayout(
            job_id=job_id,
            output_directory=out_dir,
            manifest_path=out_dir / self.manifest_name,
            staging_manifest_path=out_dir / f".{self.manifest_name}.part",
            segment_pattern=str(out_dir / self.segment_template),
        )

        try:
            out_dir.mkdir(mode=self.dir_mode, parents=True, exist_ok=True)
            if layout.manifest_path.is_file() and layout.manifest_path.stat().st_size > 0:
                raise LayoutConflictError(f"Job {job_id} already has a published manifest")
        except StorageError:
            raise
        except OSError as e:
            raise StorageError(f"Cannot create output directory {out_dir}: {e}") from e

        return layout

    def verify_staged_manifest(self, layout: PreparedLayout) -> list[str]:
        """
        Check the staged playlist before publishing; return its segment names.

        The playlist must be complete (``#EXT-X-ENDLIST``) and list at least
        one segment, every segment must be a plain file inside the output
        directory, and the names must already be in playback order.
        """
        staged = layout.staging_manifest_path
        if not staged.is_file() or staged.stat().st_size == 0:
            raise TranscodeFailure("ffmpeg exited cleanly but wrote no manifest")

        if "#EXT-X-ENDLIST" not in staged.read_text(encoding="utf-8", errors="replace"):
            raise TranscodeFailure("manifest is incomplete (missing #EXT-X-ENDLIST)")

        segments = read_segment_names(staged)
        if not segments:
            raise TranscodeFailure("manifest lists no segments")

        for name in segments:
            if "/" in name or "\\" in name or name.startswith("."):
                raise TranscodeFailure(f"manifest references a foreign path: {name}")
            if not (layout.output_directory / name).is_file():
                raise TranscodeFailure(f"manifest references missing segment: {name}")

        indices = [segment_index(name) for name in segments]
        if any(later <= earlier for earlier, later in zip(indices, indices[1:])):
            raise TranscodeFailure("manifest segments are not in ascending order")

        return segments

    def publish(self, layout: PreparedLayout) -> str:
        """Move the verified staged manifest into place and return the locator."""
        self.verify_staged_manifest(layout)
        try:
            os.replace(layout.staging_manifest_path, layout.manifest_path)
        except OSError as e:
            raise StorageError(f"Cannot publish manifest for job {layout.job_id}: {e}") from e
        return self.locator(layout.job_id)

    def discard(self, layout: PreparedLayout, remove_output: bool = False):
        """Drop a failed job's staged manifest, and optionally its whole directory."""
        try:
            layout.staging_manifest_path.unlink(missing_ok=True)
            if remove_output:
                shutil.rmtree(layout.output_directory, ignore_errors=True)
        except OSError:
            logger.warning("Could not clean up output for job %s", layout.job_id, exc_info=True)

    def resolve_asset(self, job_id: str, name: str | None = None) -> Path:
        """
        Map a public request onto a file of a published asset.

        ``name=None`` means the manifest. Raises ``FileNotFoundError`` for
        anything that is not a published manifest or a segment of one.
        """
        try:
            out_dir = self.directory_for(job_id)
        except ValidationError:
            raise FileNotFoundError(job_id)

        manifest = out_dir / self.manifest_name
        if not manifest.is_file():
            raise FileNotFoundError(str(manifest))
        if name is None:
            return manifest

        if not ASSET_NAME_RE.match(name):
            raise FileNotFoundError(name)
        path = out_dir / name
        if not path.is_file():
            raise FileNotFoundError(str(path))
        return path
