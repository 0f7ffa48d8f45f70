from django.apps import AppConfig


class TranscoderConfig(AppConfig):
    name = "transcoder"
    verbose_name = "HLS transcoder"

    def ready(self):
        from . import checks  # noqa: F401  (registers system checks)
