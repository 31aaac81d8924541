"""
Diagnostic rendering of registry HTTP exchanges.

log_exchange is a requests response hook; pass it through the hooks argument
of the puller to log every request as a cURL command together with the raw
response.
"""
import logging
import shlex
from typing import Any, List

import requests

LOGGER = logging.getLogger(__name__)

REDACTED_HEADERS = ("authorization", "proxy-authorization")


def curl_command(request: requests.PreparedRequest, redact: bool = True) -> str:
    """
    Render a prepared request as an equivalent curl command line.
    """
    parts: List[str] = ["curl", "-X", request.method or "GET"]
    for name, value in request.headers.items():
        if redact and name.lower() in REDACTED_HEADERS:
            value = "<redacted>"
        parts.extend(["-H", "{}: {}".format(name, value)])

    body = request.body
    if body:
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")
        parts.extend(["-d", body])

    parts.append(request.url or "")
    return " ".join(shlex.quote(part) for part in parts)


def dump_response(response: requests.Response) -> str:
    """
    Render the status line, headers and body of a response.
    """
    version = getattr(response.raw, "version", 11)
    lines = [
        "HTTP/{}.{} {} {}".format(
            version // 10, version % 10, response.status_code, response.reason or ""
        ).rstrip()
    ]
    for name, value in response.headers.items():
        lines.append("{}: {}".format(name, value))
    lines.append("")
    lines.append(response.text)
    return "\r\n".join(lines)


def log_exchange(response: requests.Response, *args: Any, **kwargs: Any) -> None:
    """
    Response hook logging the request and the response at debug level.
    """
    if not LOGGER.isEnabledFor(logging.DEBUG):
        return
    if response.request is not None:
        LOGGER.debug("request: %s", curl_command(response.request))
    LOGGER.debug("response:\n%s", dump_response(response))
