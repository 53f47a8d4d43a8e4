"""
autoexit-monitor Core: HTTP helper

Thin wrapper around `requests` shared by the store, swap, signer, price and
confirmation clients. Retries rate limits, server errors and network
failures with exponential backoff plus jitter; client errors fail fast.
"""

import logging
import random
import time
from typing import Any, Dict, Optional

import requests

from core.exceptions import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def request_json(method: str, url: str, *, source: str,
                 params: Optional[Dict[str, Any]] = None,
                 body: Optional[Any] = None,
                 headers: Optional[Dict[str, str]] = None,
                 timeout: float = DEFAULT_TIMEOUT,
                 max_retries: int = 3,
                 backoff_base: float = 1.0) -> Any:
    """
    Perform an HTTP request and decode the JSON body.

    Retries on:
    - 429 (rate limit)
    - 5xx (server errors)
    - Network errors (timeout, connection)

    Does NOT retry on 4xx other than 429.

    Raises:
        ProviderError: on any failure, carrying the HTTP status when known
    """
    merged_headers = {"Accept": "application/json", "Content-Type": "application/json"}
    if headers:
        merged_headers.update(headers)

    last_exception: Optional[Exception] = None
    last_status: Optional[int] = None
    attempts = max(1, int(max_retries))

    for attempt in range(attempts):
        try:
            response = requests.request(
                method,
                url,
                params=params,
                json=body,
                headers=merged_headers,
                timeout=timeout,
            )
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()

        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            last_status = status_code
            text = e.response.text if e.response is not None else str(e)

            if status_code is not None and 400 <= status_code < 500 and status_code != 429:
                if status_code == 404:
                    logger.debug(f"{source} 404: {url} - {text}")
                else:
                    logger.error(f"{source} client error: {status_code} - {text}")
                raise ProviderError(source, f"HTTP {status_code}: {text}", status_code=status_code, original=e)

            if status_code == 429:
                logger.warning(f"Rate limited (429) by {source}, attempt {attempt + 1}/{attempts}")
            else:
                logger.warning(f"Server error ({status_code}) from {source}, attempt {attempt + 1}/{attempts}")
            last_exception = e

        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            logger.warning(f"Network error calling {source}: {e}, attempt {attempt + 1}/{attempts}")
            last_exception = e

        except requests.exceptions.RequestException as e:
            logger.error(f"{source} request failed: {e}")
            raise ProviderError(source, str(e), original=e)

        except ValueError as e:
            # Body was not JSON
            raise ProviderError(source, f"invalid JSON response: {e}", original=e)

        if attempt < attempts - 1:
            backoff = backoff_base * (2 ** attempt) + random.uniform(0, backoff_base)
            logger.info(f"Retrying {source} in {backoff:.1f}s...")
            time.sleep(backoff)

    logger.error(f"All {attempts} attempts exhausted for {source}")
    raise ProviderError(
        source,
        f"failed after {attempts} attempts: {last_exception}",
        status_code=last_status,
        original=last_exception,
    )
