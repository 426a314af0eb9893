"""Client IP extraction with trusted proxy support.

Proxy headers (CF-Connecting-IP, X-Forwarded-For, X-Real-IP) are only read
when TRUST_PROXY is "1" or "true". The IP is recorded on verification
attempt buckets and security log events; it is never used for authorization.
"""

from __future__ import annotations

import os

from fastapi import Request

TRUST_PROXY = os.environ.get("TRUST_PROXY", "").lower() in ("1", "true")

PROXY_HEADERS = ("CF-Connecting-IP", "X-Forwarded-For", "X-Real-IP")


def get_client_ip(request: Request) -> str:
    """Get client IP address from request.

    Behind a trusted proxy the first address of the first proxy header
    present wins. Otherwise only the direct peer address is used.
    """
    if TRUST_PROXY:
        for header in PROXY_HEADERS:
            value = request.headers.get(header)
            if value and value.strip():
                return value.split(",")[0].strip()

    if request.client:
        return request.client.host

    return "unknown"
