import logging

from celery.result import AsyncResult
from django.conf import settings
from django.http import FileResponse, Http404
from django.urls import reverse
from django.views.decorators.http import require_GET
from kombu.exceptions import OperationalError
from rest_framework import status, views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .controller import controller_from_settings, new_job_id
from .exceptions import ProcessLaunchError
from .ffmpeg import probe_ffmpeg
from .layout import JOB_ID_RE
from .tasks import transcode_upload
from .utils import save_uploaded_file

from .serializers import (
    UploadCreateSerializer,
    JobResultSerializer,
    QueuedJobSerializer,
    JobStatusSerializer,
)

logger = logging.getLogger(__name__)

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_CONTENT_TYPES = {
    ".ts": "video/mp2t",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
}

# HTTP status per JobResult.error_kind; anything else is a server-side failure
STATUS_FOR_KIND = {
    None: status.HTTP_200_OK,
    "validation": status.HTTP_400_BAD_REQUEST,
    "capacity": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _stage(serializer):
    """Write the validated upload to the staging area; None if the disk refused."""
    try:
        return save_uploaded_file(serializer.validated_data["file"], settings.STAGING_ROOT)
    except OSError:
        logger.exception("Could not stage upload %s", serializer.validated_data["file"].name)
        return None


class HealthView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request):
        try:
            version = probe_ffmpeg(settings.FFMPEG_BIN)
        except ProcessLaunchError as e:
            return Response({"status": "ffmpeg unavailable", "detail": str(e)}, status=503)
        return Response({"status": "HLS server running", "ffmpeg": version})


class UploadAndTranscodeView(views.APIView):
    """
    Accepts a video upload, converts it to HLS within the request, and
    returns the manifest locator (or a structured failure).
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ser = UploadCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        input_path = _stage(ser)
        if input_path is None:
            return Response({"detail": "Could not store the upload"}, status=500)

        result = controller_from_settings().submit(input_path, options=ser.transcode_overrides())

        data = JobResultSerializer(result.as_dict()).data
        if result.success:
            data["message"] = "Video uploaded & converted to HLS"
        return Response(data, status=STATUS_FOR_KIND.get(result.error_kind, status.HTTP_500_INTERNAL_SERVER_ERROR))


class QueueJobView(views.APIView):
    """
    Same input as UploadAndTranscodeView, but hands the job to a Celery
    worker and answers right away with the job id.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ser = UploadCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        input_path = _stage(ser)
        if input_path is None:
            return Response({"detail": "Could not store the upload"}, status=500)

        job_id = new_job_id()
        try:
            transcode_upload.apply_async(args=[str(input_path), ser.transcode_overrides()], task_id=job_id)
        except OperationalError:
            logger.exception("Could not queue job %s", job_id)
            return Response({"detail": "Job queue unavailable"}, status=503)

        out = QueuedJobSerializer({"job_id": job_id, "status_url": reverse("job_status", args=[job_id])}).data
        return Response(out, status=status.HTTP_202_ACCEPTED)


class JobStatusView(views.APIView):
    """
    Looks up a queued job in the Celery result backend. Unknown ids report
    PENDING, as Celery cannot tell them apart from jobs not yet started.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, job_id):
        if not JOB_ID_RE.match(job_id):
            return Response({"detail": "Not found"}, status=404)

        res = AsyncResult(job_id)
        payload = {"job_id": job_id, "status": res.state}
        if res.successful():
            payload["result"] = res.result
        elif res.failed():
            payload["detail"] = str(res.result)
        return Response(JobStatusSerializer(payload).data)


@require_GET
def hls_asset(request, job_id, name=None):
    """Serve a published manifest (name=None) or one of its segments."""
    layout = controller_from_settings().layout
    try:
        path = layout.resolve_asset(job_id, name)
    except FileNotFoundError:
        raise Http404("No such HLS asset")

    if name is None:
        content_type = MANIFEST_CONTENT_TYPE
    else:
        content_type = SEGMENT_CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")

    response = FileResponse(open(path, "rb"), content_type=content_type)
    # published assets never change
    response["Cache-Control"] = "public, max-age=31536000, immutable"
    return response
