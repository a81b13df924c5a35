"""HTTP collaborator backed by ``requests``."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import requests

from harness.backends.base import HttpClient, HttpResponse
from harness.errors import HttpError

logger = logging.getLogger(__name__)


def _decode_body(response: requests.Response) -> Any:
    """
    Return parsed JSON when the server says so, text otherwise.

    Non-JSON bodies on error responses (e.g. an HTML 502 page from a proxy)
    are common, so a JSON content type with an unparseable body falls back
    to the raw text instead of raising.
    """
    content_type = response.headers.get("Content-Type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class RequestsHttpClient(HttpClient):
    """
    Sends requests through one pooled ``requests.Session``.

    Args:
        timeout: Per-request timeout in seconds.
        default_headers: Headers sent with every request.
    """

    def __init__(self, timeout: float = 10, default_headers: Mapping[str, str] | None = None):
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json", **(default_headers or {})})

    def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> HttpResponse:
        kwargs: dict[str, Any] = {
            "headers": dict(headers or {}),
            "timeout": self.timeout,
            "allow_redirects": False,
        }
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["data"] = body

        logger.debug("HTTP %s %s", method, url)
        try:
            response = self.session.request(method.upper(), url, **kwargs)
        except requests.Timeout as exc:
            raise HttpError(f"{method} {url} timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise HttpError(f"{method} {url} failed: {exc}") from exc

        return HttpResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=_decode_body(response),
        )

    def close(self) -> None:
        self.session.close()
