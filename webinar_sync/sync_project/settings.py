from pathlib import Path

from webinar_api.config import settings

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = settings.django.secret_key or "insecure-webinar-sync-development-key"
DEBUG = settings.django.debug
ALLOWED_HOSTS: list[str] = ["localhost", "127.0.0.1"]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "webinar_data.apps.WebinarDataConfig",
]

MIDDLEWARE: list[str] = []
ROOT_URLCONF = "sync_project.urls"
WSGI_APPLICATION = "sync_project.wsgi.application"


def _database_name() -> str:
    name = settings.django.db_name
    if settings.django.db_engine.endswith("sqlite3") and not Path(name).is_absolute():
        return str(BASE_DIR / name)
    return name


DATABASES = {
    "default": {
        "ENGINE": settings.django.db_engine,
        "NAME": _database_name(),
        "HOST": settings.django.db_host,
        "PORT": settings.django.db_port,
        "USER": settings.django.db_user,
        "PASSWORD": settings.django.db_password,
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "root": {
        "handlers": ["console"],
        "level": "DEBUG" if settings.debug else "INFO",
    },
}
