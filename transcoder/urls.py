from django.conf import settings
from django.urls import path

from .views import HealthView, UploadAndTranscodeView, QueueJobView, JobStatusView, hls_asset

hls_prefix = settings.HLS_URL_PREFIX.strip("/")
hls_prefix = f"{hls_prefix}/" if hls_prefix else ""

urlpatterns = [
    path("", HealthView.as_view(), name="health"),
    path("upload/", UploadAndTranscodeView.as_view(), name="upload_transcode"),  # synchronous
    path("jobs/", QueueJobView.as_view(), name="queue_job"),
    path("jobs/<str:job_id>/", JobStatusView.as_view(), name="job_status"),
    path(f"{hls_prefix}<str:job_id>/manifest", hls_asset, name="hls_manifest"),
    path(f"{hls_prefix}<str:job_id>/<str:name>", hls_asset, name="hls_segment"),
]
