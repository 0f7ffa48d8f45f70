from pathlib import Path
import logging

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from .exceptions import StorageError
from .layout import PreparedLayout, read_segment_names

logger = logging.getLogger(__name__)

# Minimal content-type hints for HLS
CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/MP2T",
    ".m2ts": "video/MP2T",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
}


def get_s3_client():
    """
    SDK client for server-side upload.
    """
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )
    return session.client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,  # e.g. http://127.0.0.1:9000
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        ),
    )


def object_url(key: str) -> str:
    """
    Direct object URL against the PUBLIC endpoint.
    """
    return f"{settings.S3_PUBLIC_ENDPOINT}/{settings.S3_BUCKET}/{key}"


def _upload(s3, local_path: Path, key: str, content_type: str | None = None):
    extra = {"ContentType": content_type} if content_type else {}
    s3.upload_file(str(local_path), settings.S3_BUCKET, key, ExtraArgs=extra or None)


def upload_hls_asset(layout: PreparedLayout, key_prefix: str | None = None, s3=None) -> str:
    """
    Mirror a finished job to S3/MinIO and return the manifest's object key.

    Segments go first and the staged playlist is uploaded last under the
    public manifest name, so a reader of the bucket never sees a manifest
    pointing at objects that are not there yet.
    """
    s3 = s3 or get_s3_client()
    prefix = f"{key_prefix or settings.S3_KEY_PREFIX}/{layout.job_id}".lstrip("/")
    manifest_key = f"{prefix}/{layout.manifest_path.name}"

    try:
        for name in read_segment_names(layout.staging_manifest_path):
            seg = layout.output_directory / name
            _upload(s3, seg, f"{prefix}/{name}", CONTENT_TYPES.get(seg.suffix.lower()))
        _upload(s3, layout.staging_manifest_path, manifest_key, CONTENT_TYPES[".m3u8"])
    except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as e:
        raise StorageError(f"Mirroring job {layout.job_id} to s3://{settings.S3_BUCKET} failed: {e}") from e

    logger.info("Mirrored job %s to %s", layout.job_id, object_url(manifest_key))
    return manifest_key
