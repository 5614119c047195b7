from webinar_api.config.serializable import Serializable


class Upstream(Serializable):
    base_url: str = "https://api.zoom.us/v2"
    token: str = ""
    user_id: str = "me"
    page_size: int = 300
    request_timeout_seconds: float = 30.0
    min_request_interval_seconds: float = 0.1
