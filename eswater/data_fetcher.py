"""Lockout-aware fetch of ESWater usage data."""

import logging
from typing import Callable

from shared.backoff import FailureTracker

from .hybrid_client import EswaterError, EswaterHybridClient
from .models import EswaterConfig, FetchResult, LoginOutcome

logger = logging.getLogger(__name__)

ClientFactory = Callable[[EswaterConfig], EswaterHybridClient]

LOCK_HINTS = ("locked", "unsuccessful")


def default_client_factory(config: EswaterConfig) -> EswaterHybridClient:
    return EswaterHybridClient(browser_executable=config.browser_executable, headless=config.headless)


class WaterUsageFetcher:
    """Runs one browser login + usage fetch, guarded by a FailureTracker.

    When the tracker is backing off no browser is started at all, so repeated
    bad logins cannot lock the portal account.
    """

    def __init__(
        self,
        config: EswaterConfig,
        tracker: FailureTracker,
        client_factory: ClientFactory = default_client_factory,
    ):
        self.config = config
        self.tracker = tracker
        self.client_factory = client_factory

    def fetch(self) -> FetchResult:
        decision = self.tracker.check()
        if not decision.allowed:
            logger.warning(decision.message)
            return FetchResult(success=False, status="waiting", error=decision.message)

        try:
            with self.client_factory(self.config) as client:
                login = client.login_and_extract_auth(self.config.username, self.config.password)
                if login.outcome is LoginOutcome.FAILURE:
                    raise EswaterError(login.message or "Login failed")
                if login.outcome is LoginOutcome.AMBIGUOUS:
                    if not self.config.allow_ambiguous_login:
                        raise EswaterError(f"Login outcome unclear: {login.message}")
                    logger.warning("Login outcome unclear, proceeding: %s", login.message)

                usage = client.get_usage_data(self.config.min_days_back, self.config.max_days_back)
                auth = client.auth
        except EswaterError as e:
            return self._failed(str(e))
        except Exception as e:
            logger.error("Unexpected error fetching ESWater data: %s", e, exc_info=True)
            return self._failed(str(e))

        self.tracker.record_success()
        return FetchResult(
            success=True,
            status="online",
            usage=usage,
            account_id=auth.account_id,
            meter_serial=auth.meter_serial,
        )

    def _failed(self, message: str) -> FetchResult:
        self.tracker.record_failure()
        logger.error("ESWater fetch failed (%d consecutive): %s", self.tracker.failure_count, message)
        if any(hint in message.lower() for hint in LOCK_HINTS):
            logger.warning("Portal reported a lock or unsuccessful login, check the account credentials")
        return FetchResult(success=False, status="error", error=message)
