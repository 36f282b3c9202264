import logging
import time
from typing import Callable

import httpx


logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {502, 503, 504}
AUTH_STATUS_CODES = {400, 401, 403}

HeadersArg = dict | Callable[[], dict] | None


class GatewayError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: int | None = None,
        error_note: str | None = None,
        raw: str | dict | None = None,
        attempts: list[dict] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.error_note = error_note
        self.raw = raw
        self.attempts = list(attempts or [])

    @property
    def attempted_urls(self) -> list[str]:
        return list(dict.fromkeys(item["url"] for item in self.attempts))

    def __str__(self) -> str:
        if not self.attempts:
            return self.message
        tried = "; ".join(
            f"{item['url']} status={item.get('status_code')} error_code={item.get('error_code')} reason={item.get('reason')}"
            for item in self.attempts
        )
        return f"{self.message} [tried: {tried}]"


class GatewayTransportError(GatewayError):
    """Network failure, timeout or 5xx without a usable body."""


class GatewayTimeoutError(GatewayTransportError):
    pass


class GatewayAuthError(GatewayError):
    """400/401/403 without a gateway body: credentials or merchant setup."""


class GatewayNonApiResponseError(GatewayError):
    """HTML page, redirect or other payload that is not the gateway API."""


class GatewayEndpointError(GatewayError):
    """Endpoint missing on this candidate (404 and similar)."""


class GatewayResponseError(GatewayError):
    """Well-formed gateway reply carrying a non-zero error_code."""


def dedupe_candidates(candidates) -> list[str]:
    out = []
    seen = set()
    for url in candidates or []:
        url = str(url or "").strip()
        if not url or url in seen:
            continue
        seen.add(url)
        out.append(url)
    return out


def _looks_like_html(response: httpx.Response) -> bool:
    content_type = (response.headers.get("content-type") or "").lower()
    if "html" in content_type:
        return True
    head = (response.text or "").lstrip()[:15].lower()
    return head.startswith("<!doctype") or head.startswith("<html") or head.startswith("<")


class GatewayClient:
    def __init__(
        self,
        *,
        timeout: float = 30,
        retry_count: int = 2,
        backoff_seconds: float = 1.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.retry_count = max(0, int(retry_count))
        self.backoff_seconds = backoff_seconds
        self._transport = transport
        self._sleep = sleep

    def post(self, candidates, payload: dict, headers: HeadersArg = None, timeout: float | None = None) -> dict:
        return self.request("POST", candidates, payload=payload, headers=headers, timeout=timeout)

    def get(self, candidates, headers: HeadersArg = None, timeout: float | None = None) -> dict:
        return self.request("GET", candidates, headers=headers, timeout=timeout)

    def request(
        self,
        method: str,
        candidates,
        *,
        payload: dict | None = None,
        headers: HeadersArg = None,
        timeout: float | None = None,
    ) -> dict:
        urls = dedupe_candidates(candidates)
        if not urls:
            raise ValueError("At least one gateway URL is required.")

        attempts: list[dict] = []
        last_exc: GatewayError | None = None
        for index, url in enumerate(urls, start=1):
            logger.info("Gateway %s candidate %s/%s: %s", method, index, len(urls), url)
            try:
                return self._request_with_retry(method, url, payload, headers, timeout, attempts)
            except GatewayError as exc:
                last_exc = exc
                logger.warning("Gateway candidate failed: %s %s (%s)", method, url, exc.message)

        logger.error("All gateway candidates failed for %s: %s", method, [item["url"] for item in attempts])
        last_exc.attempts = attempts
        raise last_exc

    def _resolve_headers(self, headers: HeadersArg) -> dict:
        base = {"Accept": "application/json", "Content-Type": "application/json"}
        extra = headers() if callable(headers) else (headers or {})
        base.update(extra)
        return base

    def _backoff(self, attempt: int) -> float:
        return self.backoff_seconds * (2**attempt)

    def _request_with_retry(
        self,
        method: str,
        url: str,
        payload: dict | None,
        headers: HeadersArg,
        timeout: float | None,
        attempts: list[dict],
    ) -> dict:
        effective_timeout = self.timeout if timeout is None else timeout
        for attempt in range(self.retry_count + 1):
            record = {"url": url, "attempt": attempt + 1, "status_code": None, "error_code": None, "reason": None}
            attempts.append(record)
            start = time.time()
            try:
                with httpx.Client(timeout=effective_timeout, transport=self._transport, follow_redirects=False) as client:
                    response = client.request(
                        method,
                        url,
                        json=payload if method != "GET" else None,
                        headers=self._resolve_headers(headers),
                    )
            except httpx.TimeoutException as exc:
                record["reason"] = "timeout"
                error = GatewayTimeoutError("Payment gateway timed out.", raw=str(exc))
            except (httpx.NetworkError, httpx.RemoteProtocolError) as exc:
                record["reason"] = "network"
                error = GatewayTransportError("Unable to reach payment gateway.", raw=str(exc))
            except httpx.TransportError as exc:
                # Proxy, scheme or local protocol failures do not heal on retry; try the next candidate.
                record["reason"] = f"transport: {type(exc).__name__}"
                raise GatewayTransportError("Unable to reach payment gateway.", raw=str(exc)) from exc
            else:
                duration_ms = round((time.time() - start) * 1000, 2)
                record["status_code"] = response.status_code
                logger.info("Gateway %s %s status=%s duration=%sms", method, url, response.status_code, duration_ms)
                try:
                    data = self._interpret(response)
                except GatewayTransportError as exc:
                    record["reason"] = exc.message
                    if response.status_code not in RETRYABLE_STATUS_CODES:
                        raise
                    error = exc
                except GatewayError as exc:
                    record["reason"] = exc.message
                    raise
                else:
                    record["error_code"] = data.get("error_code")
                    record["reason"] = "ok"
                    return data

            if attempt < self.retry_count:
                delay = self._backoff(attempt)
                logger.warning(
                    "Gateway request failed (%s), retrying in %.1fs (attempt %s/%s)",
                    record["reason"],
                    delay,
                    attempt + 1,
                    self.retry_count + 1,
                )
                self._sleep(delay)
                continue
            raise error

    def _interpret(self, response: httpx.Response) -> dict:
        status = response.status_code
        data = None
        if not _looks_like_html(response):
            try:
                data = response.json()
            except ValueError:
                data = None

        # A gateway body with error_code is authoritative whatever the HTTP status.
        if isinstance(data, dict) and "error_code" in data:
            return data

        if 300 <= status < 400:
            location = response.headers.get("location")
            raise GatewayNonApiResponseError(
                f"Gateway redirected to {location or 'an unknown location'}; not an API endpoint.",
                status_code=status,
                raw=response.text[:300],
            )
        if status in AUTH_STATUS_CODES:
            raise GatewayAuthError(
                f"Gateway rejected the request with HTTP {status}. Check merchant credentials and service id.",
                status_code=status,
                raw=response.text[:300],
            )
        if status >= 500:
            raise GatewayTransportError(f"Gateway server error HTTP {status}.", status_code=status, raw=response.text[:300])
        if status >= 400:
            raise GatewayEndpointError(f"Gateway endpoint returned HTTP {status}.", status_code=status, raw=response.text[:300])
        if isinstance(data, dict):
            return data
        raise GatewayNonApiResponseError(
            f"Gateway returned a non-API payload with HTTP {status}.",
            status_code=status,
            raw=(response.text or "")[:300],
        )
