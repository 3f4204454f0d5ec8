"""Headless device code authorization flow (RFC 8628).

The agent asks the provider for a device code, shows the user a short code
and URL, then polls the token endpoint until the user approves, declines,
or the code expires.
"""

import logging
import time
from typing import Callable, Optional

from .errors import (
    AuthorizationDeniedError,
    DeviceCodeExpiredError,
    OAuthProviderError,
)
from .workos_client import DeviceCodeResponse, TokenResponse, WorkOSAuthClient

__all__ = ["DeviceCodeFlow", "SLOW_DOWN_PENALTY_SECONDS"]

logger = logging.getLogger(__name__)

# Extra wait after a slow_down response; the base interval is not changed.
SLOW_DOWN_PENALTY_SECONDS = 5


class DeviceCodeFlow:
    """Drives device authorization and token polling."""

    def __init__(
        self,
        client: WorkOSAuthClient,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the flow.

        Args:
            client: WorkOS API client
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock used for the overall timeout
        """
        self.client = client
        self._sleep = sleep
        self._clock = clock

    def start(self) -> DeviceCodeResponse:
        """Request a device code to show to the user."""
        response = self.client.start_device_authorization()
        logger.info(
            f"Device authorization started (expires in {response.expires_in}s, "
            f"interval {response.interval}s)"
        )
        return response

    def poll(
        self, device_code: str, interval: float, timeout: Optional[float] = None
    ) -> TokenResponse:
        """Poll the token endpoint until the user completes authorization.

        Args:
            device_code: Code from start()
            interval: Seconds to wait before each request
            timeout: Wall-clock bound in seconds (normally `expires_in`)

        Returns:
            TokenResponse once the user approves

        Raises:
            DeviceCodeExpiredError: Provider reported expiry, or timeout hit
            AuthorizationDeniedError: User declined
            OAuthProviderError: Any other provider error
        """
        started = self._clock()
        attempts = 0

        while True:
            if timeout is not None and self._clock() - started >= timeout:
                logger.warning(f"Device code polling timed out after {attempts} attempts")
                raise DeviceCodeExpiredError()

            self._sleep(interval)
            attempts += 1

            try:
                token = self.client.request_device_token(device_code)
                logger.info(f"Device authorization completed after {attempts} attempts")
                return token
            except OAuthProviderError as e:
                if e.code == "authorization_pending":
                    logger.debug("Authorization pending, polling again")
                    continue
                if e.code == "slow_down":
                    logger.debug(f"Provider asked to slow down, waiting {SLOW_DOWN_PENALTY_SECONDS}s")
                    self._sleep(SLOW_DOWN_PENALTY_SECONDS)
                    continue
                if e.code == "expired_token":
                    raise DeviceCodeExpiredError(e.description) from e
                if e.code == "access_denied":
                    raise AuthorizationDeniedError(e.description) from e
                raise

    def run(self, on_code: Callable[[DeviceCodeResponse], None]) -> TokenResponse:
        """Start the flow, hand the code to `on_code` for display, then poll."""
        response = self.start()
        on_code(response)
        return self.poll(response.device_code, response.interval, timeout=response.expires_in)
