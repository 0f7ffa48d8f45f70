from pathlib import Path
import os
from dotenv import load_dotenv
from django.core.exceptions import ImproperlyConfigured

# -----------------------------------------------------
# Helpers
# -----------------------------------------------------
def env(name: str, default=None, *, required: bool = False):
    val = os.getenv(name, default)
    if required and (val is None or (isinstance(val, str) and val.strip() == "")):
        raise ImproperlyConfigured(f"Missing required environment variable: {name}")
    return val

def env_bool(name: str, default: bool = False) -> bool:
    return str(os.getenv(name, str(default))).lower() in {"1", "true", "yes", "on"}

def env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ImproperlyConfigured(f"Environment variable {name} must be an integer, got {raw!r}")

# -----------------------------------------------------
# Paths & basics
# -----------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

DEBUG = env_bool("DEBUG", False)

# In production (DEBUG=False) you must set a strong secret in .env
SECRET_KEY = env("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me", required=not DEBUG)

# Keep hosts explicit by default
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",") if h.strip()]

# -----------------------------------------------------
# Applications
# -----------------------------------------------------
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "django.contrib.staticfiles",

    # Third-party
    "corsheaders",
    "rest_framework",

    # Local
    "transcoder",
]

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "hls_service.urls"

WSGI_APPLICATION = "hls_service.wsgi.application"

# Job metadata lives only for the duration of a request (or in the Celery
# result backend), so no database is configured.
DATABASES = {}

# -----------------------------------------------------
# Internationalization
# -----------------------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# -----------------------------------------------------
# Static
# -----------------------------------------------------
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# -----------------------------------------------------
# Django REST Framework
# -----------------------------------------------------
REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
        "rest_framework.parsers.MultiPartParser",
    ],
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
}

CORS_ALLOW_ALL_ORIGINS = env_bool("CORS_ALLOW_ALL_ORIGINS", True)
CORS_ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",") if o.strip()
]

# -----------------------------------------------------
# Logging
# -----------------------------------------------------
LOG_LEVEL = env("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "standard"},
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        # ffmpeg stderr is chatty; set FFMPEG_LOG_LEVEL=DEBUG to see every line
        "transcoder.ffmpeg": {"level": env("FFMPEG_LOG_LEVEL", "INFO").upper()},
        "django": {"level": "INFO"},
    },
}

# -----------------------------------------------------
# Celery / Redis
# -----------------------------------------------------
CELERY_BROKER_URL = env("CELERY_BROKER_URL", "redis://127.0.0.1:6379/0")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", "redis://127.0.0.1:6379/0")
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_ALWAYS_EAGER = env_bool("CELERY_TASK_ALWAYS_EAGER", False)
CELERY_TASK_TIME_LIMIT = env_int("CELERY_TASK_TIME_LIMIT", 60 * 90)  # seconds

# -----------------------------------------------------
# Upload staging & HLS output
# -----------------------------------------------------
STAGING_ROOT = Path(env("STAGING_ROOT", str(BASE_DIR / "uploads")))
HLS_ROOT = Path(env("HLS_ROOT", str(BASE_DIR / "uploads" / "hls")))
HLS_URL_PREFIX = env("HLS_URL_PREFIX", "/hls").rstrip("/")
HLS_UPLOAD_MAX_BYTES = env_int("HLS_UPLOAD_MAX_BYTES", 500 * 1024 * 1024)  # 500MB

FFMPEG_BIN = env("FFMPEG_BIN", "ffmpeg")
FFMPEG_CHECK_ON_STARTUP = env_bool("FFMPEG_CHECK_ON_STARTUP", True)

HLS_MAX_CONCURRENT_JOBS = env_int("HLS_MAX_CONCURRENT_JOBS", max(1, (os.cpu_count() or 2) // 2))
HLS_QUEUE_TIMEOUT_SECONDS = env_int("HLS_QUEUE_TIMEOUT_SECONDS", 30)
HLS_JOB_TIMEOUT_SECONDS = env_int("HLS_JOB_TIMEOUT_SECONDS", 60 * 60)  # 0 disables
HLS_DIAGNOSTIC_LIMIT = env_int("HLS_DIAGNOSTIC_LIMIT", 4000)  # chars of ffmpeg stderr kept

# Failed output and staged originals are kept by default for debugging
HLS_RETAIN_FAILED_OUTPUT = env_bool("HLS_RETAIN_FAILED_OUTPUT", True)
HLS_DELETE_INPUT = env_bool("HLS_DELETE_INPUT", False)

# Default encoder options; per-request overrides are validated by TranscodeOptions
HLS_DEFAULT_OPTIONS = {
    "segment_duration_seconds": env_int("HLS_SEGMENT_DURATION", 6),
    "video_codec": env("HLS_VIDEO_CODEC", "h264"),
    "audio_codec": env("HLS_AUDIO_CODEC", "aac"),
    "video_profile": env("HLS_VIDEO_PROFILE", "main"),
    "constant_rate_factor": env_int("HLS_CRF", 20),
    "audio_bitrate_kbps": env_int("HLS_AUDIO_BITRATE_KBPS", 128),
}

# -----------------------------------------------------
# S3 / MinIO mirror (env-driven; no hardcoded secrets)
# -----------------------------------------------------
HLS_S3_MIRROR = env_bool("HLS_S3_MIRROR", False)
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or "http://127.0.0.1:9000"  # fine for local
S3_PUBLIC_ENDPOINT = os.getenv("S3_PUBLIC_ENDPOINT", S3_ENDPOINT_URL)
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_BUCKET = os.getenv("S3_BUCKET", "media-local")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")          # set in .env for local
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")          # set in .env for local
S3_KEY_PREFIX = os.getenv("S3_KEY_PREFIX", "hls").strip("/")
