"""Shared HTTP transport for vendor adapters.

Every adapter goes through HttpRetryClient so all vendors get the same
retry, backoff and re-authentication behavior. urllib3's own retries are
disabled on the mounted adapter; the policy lives here.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from device_telemetry.config.settings import get_settings
from device_telemetry.errors import (
    AuthenticationError,
    RateLimitError,
    TransportError,
    VendorAPIError,
)

logger = logging.getLogger(__name__)

HeadersArg = Union[Mapping[str, str], Callable[[], Mapping[str, str]], None]

# Longest response body kept on an error message
_MAX_ERROR_BODY = 2000


class HttpRetryClient:
    """requests.Session wrapper with uniform resilience semantics.

    - 401: calls ``on_auth_error`` once, then retries the same request
      without using up a retry slot. A second 401 raises AuthenticationError.
    - 429: sleeps ``2**attempt`` seconds and retries; raises RateLimitError
      when the budget is spent.
    - ``requests.RequestException``: sleeps ``2**attempt`` seconds and
      retries; raises TransportError chained to the last exception.
    - Other non-2xx: VendorAPIError with the status code and body text.
    - 2xx: parsed JSON when the body is JSON, otherwise the text.

    Example:
        client = HttpRetryClient(on_auth_error=adapter.handle_auth_error)
        devices = client.request("GET", f"{base}/v1/devices", headers=adapter.headers)
    """

    def __init__(
        self,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        on_auth_error: Optional[Callable[[], Any]] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            max_retries: Attempt budget per request (default from settings, 3)
            timeout: Per-call timeout in seconds
            user_agent: User-Agent header sent on every request
            on_auth_error: Hook run on the first 401 of a request; expected to
                           refresh credentials or raise AuthenticationError
            session: Pre-built requests session (tests pass a mock)
            sleep: Backoff sleep function
        """
        settings = get_settings().http

        self.max_retries = max(1, max_retries if max_retries is not None else settings.max_retries)
        self.timeout = timeout if timeout is not None else settings.timeout_seconds
        self.user_agent = user_agent or settings.user_agent
        self.on_auth_error = on_auth_error
        self._sleep = sleep

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(
                pool_connections=settings.pool_connections,
                pool_maxsize=settings.pool_maxsize,
                max_retries=Retry(total=0, redirect=3, raise_on_status=False),
            )
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def default_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
        }

    def _build_headers(self, headers: HeadersArg) -> Dict[str, str]:
        merged = self.default_headers()
        if callable(headers):
            headers = headers()
        if headers:
            merged.update(headers)
        return merged

    def request(
        self,
        method: str,
        url: str,
        headers: HeadersArg = None,
        json: Any = None,
        data: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        retry_auth: bool = True,
    ) -> Any:
        """Send a request with retries.

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Extra headers, or a callable returning them. A callable
                     is re-evaluated on every attempt so a token refreshed by
                     the auth hook is picked up by the retry.
            json: JSON body
            data: Form body (dict) or raw body
            params: Query string parameters
            retry_auth: Run the auth hook on 401. Login requests pass False
                        so a rejected login does not recurse into itself.

        Returns:
            Parsed JSON or response text

        Raises:
            AuthenticationError: 401 after re-authentication
            RateLimitError: 429 on every attempt
            VendorAPIError: Any other non-2xx status
            TransportError: Network failure on every attempt
        """
        attempt = 0
        reauthenticated = False
        last_exc: Optional[Exception] = None

        while attempt < self.max_retries:
            request_headers = self._build_headers(headers)
            if data is not None and json is None and isinstance(data, Mapping):
                request_headers["Content-Type"] = "application/x-www-form-urlencoded"

            try:
                response = self.session.request(
                    method,
                    url,
                    headers=request_headers,
                    json=json,
                    data=data,
                    params=params,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                last_exc = exc
                logger.warning(
                    "%s %s failed on attempt %s/%s: %s",
                    method, url, attempt + 1, self.max_retries, exc,
                )
                if attempt + 1 < self.max_retries:
                    self._sleep(2 ** attempt)
                attempt += 1
                continue

            status = response.status_code

            if status == 401:
                if retry_auth and self.on_auth_error is not None and not reauthenticated:
                    reauthenticated = True
                    logger.info("%s %s returned 401, re-authenticating", method, url)
                    self.on_auth_error()
                    continue
                raise AuthenticationError(f"Unauthorized: {method} {url} returned 401")

            if status == 429:
                logger.warning(
                    "%s %s rate limited on attempt %s/%s",
                    method, url, attempt + 1, self.max_retries,
                )
                if attempt + 1 < self.max_retries:
                    self._sleep(2 ** attempt)
                    attempt += 1
                    continue
                raise RateLimitError(
                    f"API Error 429: rate limit exceeded after {self.max_retries} attempts",
                    status_code=429,
                    response_text=response.text[:_MAX_ERROR_BODY],
                )

            if not 200 <= status < 300:
                body = response.text[:_MAX_ERROR_BODY]
                raise VendorAPIError(f"API Error {status}: {body}", status_code=status, response_text=body)

            return self._parse(response)

        raise TransportError(
            f"{method} {url} failed after {self.max_retries} attempts: {last_exc}"
        ) from last_exc

    @staticmethod
    def _parse(response: requests.Response) -> Any:
        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type.lower():
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    def close(self) -> None:
        self.session.close()
