"""
ProWorkflow REST API client.

Single-record GET/PUT calls only; the API has no batch or join endpoints,
so every aggregate view is assembled by the dashboard module.
"""

import base64
import json
import logging
import socket
import urllib.request
import urllib.error
from typing import Optional

import config

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Base class for failures talking to ProWorkflow."""

    def __init__(self, message: str, endpoint: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status = status


class UpstreamUnavailable(UpstreamError):
    """Network failure, timeout or a non-404 HTTP error."""


class UpstreamNotFound(UpstreamError):
    """The requested record does not exist (HTTP 404)."""


class MalformedResponse(UpstreamError):
    """The response body was not the JSON shape we expected."""


def _auth_headers() -> dict:
    credentials = f"{config.PROWORKFLOW_USERNAME}:{config.PROWORKFLOW_PASSWORD}"
    token = base64.b64encode(credentials.encode()).decode()
    return {
        "apikey": config.PROWORKFLOW_API_KEY,
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Authorization": f"Basic {token}",
    }


def proworkflow_request(endpoint: str, method: str = "GET", body: Optional[dict] = None) -> dict:
    """Make a request to the ProWorkflow API and return the decoded JSON object.

    Raises:
        UpstreamNotFound: on HTTP 404
        UpstreamUnavailable: on any other HTTP error, connection error or timeout
        MalformedResponse: when the body is not a JSON object
    """
    url = f"{config.PROWORKFLOW_BASE_URL}{endpoint}"
    data = json.dumps(body).encode() if body is not None else None
    req = urllib.request.Request(url, data=data, headers=_auth_headers(), method=method)

    logger.info(f"ProWorkflow API {method}: {endpoint}")
    try:
        with urllib.request.urlopen(req, timeout=config.PROWORKFLOW_TIMEOUT) as response:
            raw = response.read().decode()
    except urllib.error.HTTPError as e:
        logger.error(f"ProWorkflow API HTTP error: {e.code} - {e.reason} for {method} {endpoint}")
        logger.error(f"Error response: {e.read().decode(errors='replace')[:500]}")
        if e.code == 404:
            raise UpstreamNotFound(f"Not found: {endpoint}", endpoint, e.code) from e
        raise UpstreamUnavailable(f"HTTP {e.code} from ProWorkflow", endpoint, e.code) from e
    except (urllib.error.URLError, socket.timeout, ConnectionError) as e:
        reason = getattr(e, "reason", e)
        logger.error(f"ProWorkflow API connection error: {reason} for {method} {endpoint}")
        raise UpstreamUnavailable(f"ProWorkflow unreachable: {reason}", endpoint) from e

    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError as e:
        logger.error(f"ProWorkflow API returned invalid JSON for {endpoint}: {raw[:200]}")
        raise MalformedResponse("Response was not valid JSON", endpoint) from e
    if not isinstance(payload, dict):
        raise MalformedResponse(f"Expected a JSON object, got {type(payload).__name__}", endpoint)

    logger.info(f"ProWorkflow API success: {endpoint} - returned {len(raw)} chars")
    return payload


# ============================================================================
# Envelope helpers
# ============================================================================

def extract_list(payload, *keys, endpoint: str = "") -> list:
    """Pull the record list out of a response envelope.

    ProWorkflow wraps lists under a resource-named key (``projects``,
    ``tasks``, ``messages``...); older endpoints use ``data``. A bare list
    is accepted as-is.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys + ("data",):
            if key in payload:
                value = payload[key]
                if value is None:
                    return []
                if isinstance(value, list):
                    return value
                raise MalformedResponse(f"'{key}' is not a list", endpoint)
        if not payload:
            return []
    raise MalformedResponse(f"No list found under {', '.join(keys)}", endpoint)


def extract_record(payload, key: str, endpoint: str = "") -> dict:
    """Pull a single record out of its envelope (e.g. ``{"project": {...}}``)."""
    if isinstance(payload, dict):
        record = payload.get(key)
        if isinstance(record, dict):
            return record
    raise MalformedResponse(f"Missing '{key}' record", endpoint)
