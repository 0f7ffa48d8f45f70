from django.conf import settings
from rest_framework import serializers

from .utils import is_video_upload

# Per-request encoder overrides accepted next to the uploaded file
OPTION_FIELDS = (
    "segment_duration_seconds",
    "video_codec",
    "audio_codec",
    "video_profile",
    "constant_rate_factor",
    "audio_bitrate_kbps",
)

FFMPEG_NAME = r"^[A-Za-z0-9_.]+$"


class UploadCreateSerializer(serializers.Serializer):
    # Empty files are let through so the job reports them like any bad input
    file = serializers.FileField(allow_empty_file=True)

    segment_duration_seconds = serializers.IntegerField(required=False, min_value=1, max_value=60)
    video_codec = serializers.RegexField(FFMPEG_NAME, required=False, max_length=32)
    audio_codec = serializers.RegexField(FFMPEG_NAME, required=False, max_length=32)
    video_profile = serializers.RegexField(FFMPEG_NAME, required=False, max_length=32)
    constant_rate_factor = serializers.IntegerField(required=False, min_value=0, max_value=51)
    audio_bitrate_kbps = serializers.IntegerField(required=False, min_value=8, max_value=1024)

    def validate_file(self, value):
        limit = settings.HLS_UPLOAD_MAX_BYTES
        if value.size is not None and value.size > limit:
            raise serializers.ValidationError(f"File exceeds the {limit // (1024 * 1024)}MB upload limit")
        if not is_video_upload(value):
            raise serializers.ValidationError("Only video files are allowed")
        return value

    def transcode_overrides(self) -> dict:
        return {k: v for k, v in self.validated_data.items() if k in OPTION_FIELDS}


class JobResultSerializer(serializers.Serializer):
    job_id = serializers.CharField()
    state = serializers.CharField()
    success = serializers.BooleanField()
    locator = serializers.CharField(allow_null=True)
    diagnostic = serializers.CharField(allow_null=True, allow_blank=True)
    error_kind = serializers.CharField(allow_null=True)


class QueuedJobSerializer(serializers.Serializer):
    job_id = serializers.CharField()
    status_url = serializers.CharField()


class JobStatusSerializer(serializers.Serializer):
    job_id = serializers.CharField()
    status = serializers.CharField()
    result = JobResultSerializer(allow_null=True, required=False)
    detail = serializers.CharField(required=False)
