"""HTTP downloads for installers and public address lookups."""

import requests

from hostforge.utils.errors import ApplyFailedError, ErrorContext
from hostforge.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30


def fetch(url: str, timeout: int = DEFAULT_TIMEOUT) -> bytes:
    """Download a URL.

    Raises:
        ApplyFailedError: On connection errors and non-2xx responses
    """
    logger.debug(f"GET {url}")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ApplyFailedError(
            f"Download failed: {url}",
            context=ErrorContext(operation="download", additional_info={'url': url}),
            cause=e,
            suggestions=["Check outbound network access from this host"],
        )
    return response.content


def fetch_text(url: str, timeout: int = DEFAULT_TIMEOUT) -> str:
    return fetch(url, timeout).decode("utf-8", errors="replace").strip()
