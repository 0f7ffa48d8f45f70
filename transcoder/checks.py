"""
System checks run by ``manage.py check`` and ``runserver``: a missing ffmpeg
is a deployment error and should stop the service before it takes uploads.
"""
import logging
from pathlib import Path

from django.conf import settings
from django.core.checks import Error, register

from .exceptions import ProcessLaunchError
from .ffmpeg import probe_ffmpeg

logger = logging.getLogger(__name__)


@register("transcoder")
def ffmpeg_available(app_configs=None, **kwargs):
    if not settings.FFMPEG_CHECK_ON_STARTUP:
        return []
    try:
        version = probe_ffmpeg(settings.FFMPEG_BIN)
    except ProcessLaunchError as e:
        return [Error(str(e), hint="Install ffmpeg or point FFMPEG_BIN at it.", id="transcoder.E001")]
    logger.info("Using %s", version)
    return []


@register("transcoder")
def storage_roots_writable(app_configs=None, **kwargs):
    errors = []
    for name in ("STAGING_ROOT", "HLS_ROOT"):
        root = Path(getattr(settings, name))
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(Error(f"{name} {root} cannot be created: {e}", id="transcoder.E002"))
    return errors
