import logging
import threading
import time
from datetime import date, datetime
from http import HTTPStatus
from typing import Callable, Generator

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from webinar_api.config import settings
from webinar_api.type_defs import JsonObject, QueryParams, is_json_object, json_objects, normalize_count
from webinar_api.utils import Deadline, format_query_date

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str]
RESPONSE_PREVIEW_LIMIT = 500


class ApiError(requests.RequestException):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ApiError):
    pass


class NotFoundError(ApiError):
    pass


def _preview_response_body(response: requests.Response) -> str:
    text = getattr(response, "text", "") or ""
    if len(text) > RESPONSE_PREVIEW_LIMIT:
        return f"{text[:RESPONSE_PREVIEW_LIMIT]}..."
    return text


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(error, NotFoundError):
        return False
    if isinstance(error, ApiError):
        status_code = error.status_code
        return status_code is None or status_code == HTTPStatus.TOO_MANY_REQUESTS or status_code >= 500
    return False


class Client(requests.Session):
    MAX_RETRIES = 4

    def __init__(
        self,
        token: str = "",
        base_url: str = "",
        token_provider: TokenProvider | None = None,
    ) -> None:
        super().__init__()

        self.base_url = (base_url or settings.upstream.base_url).rstrip("/")
        self.user_id = settings.upstream.user_id or "me"
        self.page_size = settings.upstream.page_size
        self.request_timeout = settings.upstream.request_timeout_seconds
        self.min_request_interval = settings.upstream.min_request_interval_seconds
        static_token = token or settings.upstream.token
        self._token_provider: TokenProvider = token_provider or (lambda: static_token)
        self._rate_limit_lock = threading.Lock()
        self._last_request_at = 0.0
        self.headers.update({"accept": "application/json"})

    def _wait_for_rate_limit(self) -> None:
        if self.min_request_interval <= 0:
            return
        with self._rate_limit_lock:
            elapsed = time.monotonic() - self._last_request_at
            if elapsed < self.min_request_interval:
                time.sleep(self.min_request_interval - elapsed)
            self._last_request_at = time.monotonic()

    @retry(
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    def request(self, method: str, url: str, *args, **kwargs) -> requests.Response:
        self._wait_for_rate_limit()
        kwargs.setdefault("timeout", self.request_timeout)
        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("Authorization", f"Bearer {self._token_provider()}")
        response = super().request(method, url, *args, headers=headers, **kwargs)

        status_code = response.status_code
        if status_code == HTTPStatus.TOO_MANY_REQUESTS.value:
            logger.info("Rate limit reached on %s. Waiting and retrying...", url)
            raise RateLimitError("Rate limit reached (429)", status_code)

        if status_code in (HTTPStatus.UNAUTHORIZED.value, HTTPStatus.FORBIDDEN.value):
            logger.error("Received authorization error %s: %s", status_code, _preview_response_body(response))
            raise PermissionError(f"Authorization failed ({status_code}) for {url}")

        if status_code == HTTPStatus.NOT_FOUND.value:
            raise NotFoundError(f"Resource not found (404): {url}", status_code)

        if status_code != HTTPStatus.OK.value:
            logger.warning("Request failed with status code %s. Retrying...", status_code)
            raise ApiError(
                f"Received unexpected status code: {status_code}. "
                f"Response content: {_preview_response_body(response)}",
                status_code,
            )

        if settings.debug:
            logger.debug("GET %s -> %s", url, _preview_response_body(response))
        return response

    def fetch_from_api(
        self, path: str, params: QueryParams | None = None, deadline: Deadline | None = None
    ) -> JsonObject:
        timeout = (deadline or Deadline.never()).request_timeout(self.request_timeout)
        response = self.get(f"{self.base_url}/{path.lstrip('/')}", params=params, timeout=timeout)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiError(f"Invalid JSON from {path}: {exc}") from exc
        if not is_json_object(payload):
            raise ApiError(f"Unexpected payload shape from {path}: {type(payload).__name__}")
        return payload

    def list_webinars(
        self,
        category: str,
        date_from: datetime | date | None = None,
        date_to: datetime | date | None = None,
        page_number: int = 1,
        page_size: int | None = None,
        deadline: Deadline | None = None,
    ) -> tuple[list[JsonObject], int]:
        params: QueryParams = {
            "type": category,
            "page_size": page_size or self.page_size,
            "page_number": page_number,
        }
        if date_from is not None:
            params["from"] = format_query_date(date_from)
        if date_to is not None:
            params["to"] = format_query_date(date_to)

        payload = self.fetch_from_api(f"users/{self.user_id}/webinars", params=params, deadline=deadline)
        page_count = normalize_count(payload.get("page_count")) or 1
        return json_objects(payload.get("webinars")), page_count

    def get_webinar(self, webinar_id: str, deadline: Deadline | None = None) -> JsonObject:
        return self.fetch_from_api(f"webinars/{webinar_id}", deadline=deadline)

    def iter_pages(
        self,
        path: str,
        collection_key: str,
        params: QueryParams | None = None,
        deadline: Deadline | None = None,
        max_pages: int | None = None,
    ) -> Generator[JsonObject, None, None]:
        """Yield rows across ``page_count`` or ``next_page_token`` pagination."""
        deadline = deadline or Deadline.never()
        max_pages = max_pages or settings.sync.page_ceiling
        page_number = 1
        next_page_token: str | None = None
        while page_number <= max_pages:
            deadline.check()
            page_params: QueryParams = {"page_size": self.page_size, **(params or {})}
            if next_page_token:
                page_params["next_page_token"] = next_page_token
            else:
                page_params["page_number"] = page_number

            payload = self.fetch_from_api(path, params=page_params, deadline=deadline)
            rows = json_objects(payload.get(collection_key))
            yield from rows

            token = payload.get("next_page_token")
            next_page_token = token if isinstance(token, str) and token else None
            page_count = normalize_count(payload.get("page_count")) or 1
            if not rows or (next_page_token is None and page_number >= page_count):
                return
            page_number += 1

        logger.warning("Stopped paging %s after %s pages (page ceiling).", path, max_pages)

    def iter_participants(
        self, webinar_id: str, deadline: Deadline | None = None, max_pages: int | None = None
    ) -> Generator[JsonObject, None, None]:
        return self.iter_pages(
            f"report/webinars/{webinar_id}/participants",
            "participants",
            deadline=deadline,
            max_pages=max_pages,
        )

    def iter_registrants(
        self, webinar_id: str, deadline: Deadline | None = None, max_pages: int | None = None
    ) -> Generator[JsonObject, None, None]:
        return self.iter_pages(
            f"webinars/{webinar_id}/registrants", "registrants", deadline=deadline, max_pages=max_pages
        )

    def iter_polls(
        self, webinar_id: str, deadline: Deadline | None = None, max_pages: int | None = None
    ) -> Generator[JsonObject, None, None]:
        return self.iter_pages(
            f"report/webinars/{webinar_id}/polls", "questions", deadline=deadline, max_pages=max_pages
        )

    def iter_questions(
        self, webinar_id: str, deadline: Deadline | None = None, max_pages: int | None = None
    ) -> Generator[JsonObject, None, None]:
        """Q&A report rows; each row is one attendee with their ``question_details``."""
        return self.iter_pages(
            f"report/webinars/{webinar_id}/qa", "questions", deadline=deadline, max_pages=max_pages
        )
