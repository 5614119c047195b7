from webinar_api.config.base import AppSettings

settings = AppSettings.get_instance()
