"""Canned HTTP responses and in-memory images for the test suite."""

import io
import threading
import time
from typing import Dict, List, Optional, Union

import requests
from PIL import Image
from requests.structures import CaseInsensitiveDict


class FakeResponse:
    def __init__(
        self,
        content: bytes = b"",
        status_code: int = 200,
        content_type: Optional[str] = "text/html; charset=utf-8",
        url: str = "",
        delay: float = 0.0,
    ):
        self.content = content
        self.status_code = status_code
        self.headers = CaseInsensitiveDict()
        if content_type is not None:
            self.headers["Content-Type"] = content_type
        self.url = url
        self.delay = delay

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}")


Route = Union[FakeResponse, Exception]


class FakeSession:
    """Serves canned responses and records every requested URL."""

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: List[str] = []
        self.closed = False
        self._lock = threading.Lock()

    def get(self, url: str, timeout: Optional[float] = None, **kwargs):
        with self._lock:
            self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            raise requests.ConnectionError(f"no route to {url}")
        if isinstance(route, Exception):
            raise route
        if route.delay:
            time.sleep(route.delay)
        if not route.url:
            route.url = url
        return route

    def close(self) -> None:
        self.closed = True


def make_image(fmt: str = "PNG", size=(8, 8), color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def html_response(markup: str, url: str = "", **kwargs) -> FakeResponse:
    return FakeResponse(markup.encode("utf-8"), url=url, **kwargs)


def image_response(data: bytes, content_type: str = "image/png", **kwargs) -> FakeResponse:
    return FakeResponse(data, content_type=content_type, **kwargs)
