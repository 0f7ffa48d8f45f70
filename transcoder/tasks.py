import logging

from celery import shared_task

from .controller import controller_from_settings

logger = logging.getLogger(__name__)


@shared_task(bind=True, name="transcoder.transcode_upload")
def transcode_upload(self, input_path: str, options: dict | None = None) -> dict:
    """
    Background variant of POST /upload/. The Celery task id doubles as the
    job id, so the status endpoint can look the result up by job id.
    """
    logger.info("Worker picked up job %s", self.request.id)
    result = controller_from_settings().submit(input_path, options=options, job_id=self.request.id)
    return result.as_dict()
