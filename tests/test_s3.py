"""Object-store mirroring of finished jobs."""
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from transcoder.controller import controller_from_settings
from transcoder.exceptions import StorageError
from transcoder.s3 import get_s3_client, object_url, upload_hls_asset


@pytest.fixture
def s3_settings(settings):
    settings.S3_BUCKET = "media-test"
    settings.S3_KEY_PREFIX = "hls"
    settings.S3_ENDPOINT_URL = "http://minio.local:9000"
    settings.S3_PUBLIC_ENDPOINT = "https://cdn.example.com"
    return settings


@pytest.fixture
def staged(layout):
    prepared = layout.prepare("job42")
    lines = ["#EXTM3U", "#EXT-X-PLAYLIST-TYPE:VOD"]
    for i in range(3):
        name = f"segment_{i:03d}.ts"
        (prepared.output_directory / name).write_bytes(b"\x47" * 188)
        lines += ["#EXTINF:6.000000,", name]
    lines.append("#EXT-X-ENDLIST")
    prepared.staging_manifest_path.write_text("\n".join(lines) + "\n")
    return prepared


def test_segments_upload_before_manifest(s3_settings, staged):
    s3 = Mock()

    key = upload_hls_asset(staged, s3=s3)

    assert key == "hls/job42/index.m3u8"
    calls = s3.upload_file.call_args_list
    assert [c.args[2] for c in calls] == [
        "hls/job42/segment_000.ts",
        "hls/job42/segment_001.ts",
        "hls/job42/segment_002.ts",
        "hls/job42/index.m3u8",
    ]
    assert all(c.args[1] == "media-test" for c in calls)
    assert calls[0].kwargs["ExtraArgs"] == {"ContentType": "video/MP2T"}
    assert calls[-1].args[0] == str(staged.staging_manifest_path)
    assert calls[-1].kwargs["ExtraArgs"] == {"ContentType": "application/vnd.apple.mpegurl"}


def test_client_errors_become_storage_errors(s3_settings, staged):
    s3 = Mock()
    s3.upload_file.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "PutObject")

    with pytest.raises(StorageError, match="media-test"):
        upload_hls_asset(staged, s3=s3)


def test_client_targets_configured_endpoint(s3_settings):
    assert get_s3_client().meta.endpoint_url == "http://minio.local:9000"


def test_object_url_uses_public_endpoint(s3_settings):
    assert object_url("hls/job42/index.m3u8") == "https://cdn.example.com/media-test/hls/job42/index.m3u8"


def test_mirror_logs_public_manifest_url(s3_settings, staged, caplog):
    with caplog.at_level("INFO", logger="transcoder.s3"):
        upload_hls_asset(staged, s3=Mock())

    assert "https://cdn.example.com/media-test/hls/job42/index.m3u8" in caplog.text


def test_mirror_wired_from_settings(hls_settings):
    assert controller_from_settings().mirror is None

    hls_settings.HLS_S3_MIRROR = True

    assert controller_from_settings().mirror is upload_hls_asset
