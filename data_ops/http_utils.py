"""HTTP utilities — shared request helpers for the data sources."""

import logging
import time as _time

import requests

from agent.logging import tagged

logger = logging.getLogger("bosun")

DEFAULT_TIMEOUT = 10  # seconds per request
DEFAULT_RETRIES = 3


def request_with_retry(url, timeout=DEFAULT_TIMEOUT, retries=DEFAULT_RETRIES,
                       sleep=_time.sleep, **kwargs):
    """GET request with retry on timeout/connection errors.

    HTTP error statuses are raised immediately (``raise_for_status``).
    """
    last_exc = None
    for attempt in range(1, retries + 1):
        try:
            resp = requests.get(url, timeout=timeout, **kwargs)
            resp.raise_for_status()
            return resp
        except (requests.exceptions.Timeout,
                requests.exceptions.ConnectionError) as e:
            last_exc = e
            if attempt < retries:
                wait = 2 ** (attempt - 1)  # 1s, 2s backoff
                logger.debug(f"[HTTP] Retry {attempt}/{retries} for {url} (wait {wait}s): {e}",
                             extra=tagged("http_retry"))
                sleep(wait)
    raise last_exc
