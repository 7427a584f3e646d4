"""
api_logging.py
~~~~~~~~~~~~~~
Emit **one concise log line** per outbound places request, with the API key
scrubbed from the URL, and (optionally) raise for server-side errors.

Usage example
-------------
>>> from .api_logging import logged_request_async
>>> async with httpx.AsyncClient() as cli:
...     resp = await logged_request_async(cli, "get", url, params=params)
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

import httpx

LOG = logging.getLogger("extapi")

_SECRET_PARAM_RE = re.compile(r"(?P<name>key|api_key|token)=[^&]+", re.I)


def redact(url: str) -> str:
    """Replace secret query-string values with ``***``."""
    return _SECRET_PARAM_RE.sub(lambda m: f"{m.group('name')}=***", url)


async def logged_request_async(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *args: Any,
    raise_for_status: bool = True,
    **kwargs: Any,
) -> httpx.Response:
    """
    Issue one HTTP request on *client* **and** log it.

    Parameters
    ----------
    client:
        ``httpx.AsyncClient`` instance.
    method:
        HTTP verb – e.g. ``"get"``, ``"post"`` … **lower-case** or **upper-case**.
    url:
        Absolute URL. Query parameters passed via ``params=`` are included
        in the logged URL (redacted).
    raise_for_status:
        *True* ⇒ propagate 5xx via :pymeth:`httpx.Response.raise_for_status`.
        *False* ⇒ never raise; the caller decides.

    Notes
    -----
    * **404** responses are logged at *INFO*.
    * **≥500** responses are logged at *WARNING*.
    * Network errors are logged at *WARNING* and re-raised.
    """
    verb = method.upper()
    shown = url
    t0 = time.perf_counter()
    try:
        response = await getattr(client, method.lower())(url, *args, **kwargs)
    except Exception as exc:
        latency_ms = (time.perf_counter() - t0) * 1000.0
        LOG.warning("FAIL %s %s %.0f ms %s", verb, redact(shown), latency_ms, exc)
        raise

    latency_ms = (time.perf_counter() - t0) * 1000.0
    code = response.status_code
    try:
        shown = str(response.request.url)
    except RuntimeError:  # response built without a request (tests)
        pass

    if code >= 500:
        LOG.warning("%s %s → %s (%.0f ms)", verb, redact(shown), code, latency_ms)
    else:
        LOG.info("%s %s → %s (%.0f ms)", verb, redact(shown), code, latency_ms)

    if raise_for_status and code >= 500:
        response.raise_for_status()

    return response


__all__ = ["logged_request_async", "redact"]
