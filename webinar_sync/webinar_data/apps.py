from django.apps import AppConfig


class WebinarDataConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "webinar_data"
