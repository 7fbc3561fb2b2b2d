"""Sync notification hook for calstore.

The store never talks to a sync server. After a bootstrap, a lossy reset or
an upgrade step that invalidates local sync state, it asks a SyncScheduler
to run a sync and moves on. Requests are fire-and-forget: a scheduler that
raises is logged and ignored, and nothing is retried.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Set

import httpx

from calstore.config import StoreConfig, validate_backend_url
from calstore.protocols import SyncScheduler
from calstore.types import Account, SyncRequest

logger = logging.getLogger(__name__)


class LoggingSyncScheduler:
    """Default scheduler: records the request in the log and does nothing else."""

    def schedule_sync(
        self,
        account: Optional[Account],
        upload_only: bool,
        calendar_url: Optional[str] = None,
    ) -> None:
        target = str(account) if account else "all accounts"
        mode = "upload-only" if upload_only else "two-way"
        if calendar_url:
            logger.info(f"Sync requested ({mode}) for {target}, feed {calendar_url}")
        else:
            logger.info(f"Sync requested ({mode}) for {target}")


class CallbackSyncScheduler:
    """Adapt a plain ``fn(account, upload_only, calendar_url)`` callable."""

    def __init__(self, fn: Callable[[Optional[Account], bool, Optional[str]], None]):
        self._fn = fn

    def schedule_sync(
        self,
        account: Optional[Account],
        upload_only: bool,
        calendar_url: Optional[str] = None,
    ) -> None:
        self._fn(account, upload_only, calendar_url)


class HttpSyncScheduler:
    """Post sync requests to a sync backend.

    Args:
        backend_url: Base URL of the sync service.
        auth_token: Bearer token sent with every request.
        timeout: Request timeout in seconds.
        client: Optional preconfigured ``httpx.Client`` (tests inject one
            backed by ``httpx.MockTransport``).
    """

    REQUEST_PATH = "/sync/requests"

    def __init__(
        self,
        backend_url: str,
        auth_token: str,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        validated = validate_backend_url(backend_url)
        if not validated:
            raise ValueError(f"Invalid sync backend URL: {backend_url}")
        self.backend_url = validated.rstrip("/")
        self._auth_token = auth_token
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_config(cls, config: StoreConfig) -> Optional["HttpSyncScheduler"]:
        """Build a scheduler from settings, or None when no backend is configured."""
        if not config.has_sync_backend:
            return None
        return cls(config.sync_url, config.sync_token, timeout=config.sync_timeout)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._auth_token}",
            "Content-Type": "application/json",
        }

    def schedule_sync(
        self,
        account: Optional[Account],
        upload_only: bool,
        calendar_url: Optional[str] = None,
    ) -> None:
        extras = {"upload": upload_only}
        if calendar_url is not None:
            extras["feed"] = calendar_url
            extras["manual"] = True
        payload = {
            "account": {"name": account.name, "type": account.type} if account else None,
            "extras": extras,
        }
        response = self._client.post(
            f"{self.backend_url}{self.REQUEST_PATH}",
            json=payload,
            headers=self._headers(),
        )
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


class SyncNotificationHook:
    """Turns store-level events into sync requests.

    Args:
        scheduler: Where requests go. Defaults to LoggingSyncScheduler.
    """

    def __init__(self, scheduler: Optional[SyncScheduler] = None):
        self.scheduler = scheduler or LoggingSyncScheduler()

    def dispatch(self, request: SyncRequest) -> bool:
        """Hand one request to the scheduler.

        Returns:
            True if the scheduler accepted it, False if it raised.
        """
        try:
            self.scheduler.schedule_sync(request.account, request.upload_only, request.calendar_url)
            return True
        except Exception as e:
            # Fire-and-forget: the receiving side's failures are not ours to handle
            logger.warning(f"Sync request for {request.account or 'all accounts'} failed: {e}")
            return False

    def notify_full_sync_needed(self) -> List[SyncRequest]:
        """Request a full sync of every account."""
        request = SyncRequest(account=None, upload_only=False)
        self.dispatch(request)
        return [request]

    def notify_resync_needed(
        self,
        accounts: Set[Account],
        calendar_urls: Optional[Dict[Account, List[Optional[str]]]] = None,
    ) -> List[SyncRequest]:
        """Request a two-way sync for each account.

        Args:
            accounts: Accounts whose local sync state was discarded.
            calendar_urls: Optional feed URLs per account; one request is made
                per feed, or one per account when none are known.
        """
        calendar_urls = calendar_urls or {}
        requests = []
        for account in sorted(accounts, key=lambda a: (a.type, a.name)):
            urls = calendar_urls.get(account) or [None]
            for url in urls:
                requests.append(SyncRequest(account=account, upload_only=False, calendar_url=url))
        for request in requests:
            self.dispatch(request)
        return requests

    def deliver(self, requests: Iterable[SyncRequest]) -> None:
        for request in requests:
            self.dispatch(request)
