from __future__ import annotations

import json
import typing as t
from urllib.parse import unquote, urlsplit

import requests

from . import __version__
from .errors import APIError, TransportError
from .signatures import verify_response

JSONAPI_MEDIA_TYPE = "application/vnd.api+json"
REQUEST_TIMEOUT = 30  # seconds
USER_AGENT = f"keygen-cli/{__version__}"


def parse_api_error(status: int, body: bytes) -> APIError:
    """Map an error response to APIError; the first listed error wins."""
    text = body.decode("utf-8", errors="replace")
    try:
        doc = json.loads(text)
    except ValueError:
        doc = None
    errors = doc.get("errors") if isinstance(doc, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        first = errors[0]
        return APIError(
            status,
            title=str(first.get("title") or ""),
            detail=str(first.get("detail") or ""),
            code=str(first.get("code") or ""),
            body=text,
        )
    return APIError(status, body=text)


class Transport:
    """
    One authenticated HTTP call per request() against
    {base_url}/v1/accounts/{account_id}{path}.

    No retries: a failed call raises once and the command fails.
    """

    def __init__(
        self,
        base_url: str,
        account_id: str,
        token: str = "",
        *,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT,
        public_key: str = "",
    ):
        self.base_url = base_url.rstrip("/")
        self.account_id = account_id
        self.token = token
        self.timeout = timeout
        self.public_key = public_key
        self.session = session or requests.Session()

    def url(self, path: str) -> str:
        return f"{self.base_url}/v1/accounts/{self.account_id}{path}"

    def _headers(self, *, with_body: bool, basic_auth: bool) -> dict[str, str]:
        headers = {
            "Accept": JSONAPI_MEDIA_TYPE,
            "User-Agent": USER_AGENT,
        }
        if with_body:
            headers["Content-Type"] = JSONAPI_MEDIA_TYPE
        if not basic_auth and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def request(
        self,
        method: str,
        path: str,
        *,
        params: t.Mapping[str, t.Any] | None = None,
        json_body: t.Any = None,
        basic_auth: tuple[str, str] | None = None,
    ) -> bytes:
        data = json.dumps(json_body) if json_body is not None else None
        try:
            resp = self.session.request(
                method,
                self.url(path),
                params={k: v for k, v in (params or {}).items() if v not in (None, "")},
                data=data,
                auth=basic_auth,
                headers=self._headers(with_body=data is not None, basic_auth=basic_auth is not None),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"executing request: {exc}") from exc

        if resp.status_code >= 400:
            raise parse_api_error(resp.status_code, resp.content or b"")

        if self.public_key:
            parts = urlsplit(resp.url or self.url(path))
            uri = unquote(parts.path + (f"?{parts.query}" if parts.query else ""))
            verify_response(
                resp,
                self.public_key,
                method=method,
                uri=uri,
                host=parts.netloc or urlsplit(self.base_url).netloc,
            )
        return resp.content or b""

    def get(self, path: str, params: t.Mapping[str, t.Any] | None = None) -> bytes:
        return self.request("GET", path, params=params)

    def post(self, path: str, payload: t.Any = None) -> bytes:
        return self.request("POST", path, json_body=payload)

    def patch(self, path: str, payload: t.Any) -> bytes:
        return self.request("PATCH", path, json_body=payload)

    def delete(self, path: str) -> bytes:
        return self.request("DELETE", path)
