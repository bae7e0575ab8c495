"""
Check whether a newer CANtastic release has been published.

The published version file holds a single version string. Network
problems are not errors here: the caller just reports that the check
could not be made.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import requests

from cantastic.config import RetryConfig

logger = logging.getLogger(__name__)


@dataclass
class UpdateInfo:
    current: str
    latest: str

    @property
    def update_available(self) -> bool:
        return self.latest != self.current


def fetch_latest_version(
    url: str,
    timeout: float = 5.0,
    retry_config: Optional[RetryConfig] = None,
) -> Optional[str]:
    """Fetch the published version string.

    Retries on timeouts, connection errors and HTTP 5xx. Returns None if
    no usable answer was received.
    """
    retry_config = retry_config or RetryConfig()

    for attempt in range(retry_config.max_retries + 1):
        try:
            response = requests.get(url, timeout=timeout)

            if response.status_code == 200:
                latest = response.text.strip()
                return latest or None

            if response.status_code >= 500:
                logger.debug(f"Version check got HTTP {response.status_code}, retrying")
            else:
                logger.debug(f"Version check got HTTP {response.status_code}")
                return None

        except requests.exceptions.Timeout:
            logger.debug(f"Version check timed out (attempt {attempt + 1})")
        except requests.exceptions.ConnectionError as e:
            logger.debug(f"Version check connection error: {e}")
        except requests.exceptions.RequestException as e:
            # Bad URL, redirect loop, broken body: retrying won't help
            logger.debug(f"Version check failed: {e}")
            return None

        if attempt < retry_config.max_retries:
            time.sleep(retry_config.get_delay(attempt))

    return None


def check_for_update(
    current: str,
    url: str,
    retry_config: Optional[RetryConfig] = None,
) -> Optional[UpdateInfo]:
    """Compare the running version with the published one.

    Returns:
        UpdateInfo, or None if the published version could not be fetched.
    """
    latest = fetch_latest_version(url, retry_config=retry_config)
    if latest is None:
        logger.warning("Could not check for updates")
        return None
    return UpdateInfo(current=current, latest=latest)
