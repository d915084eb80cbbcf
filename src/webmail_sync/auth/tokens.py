"""Access-token management for the signed-in user's Google credential.

Tokens are refreshed proactively when they are about to expire, and on demand
when Gmail rejects a token that looked valid. The user record in the local
store is the only place tokens are kept.
"""

from __future__ import annotations

import asyncio
import calendar
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from google.auth.exceptions import GoogleAuthError

from webmail_sync.config import OAuthClientConfig
from webmail_sync.exceptions import AuthExpired, NotAuthenticated
from webmail_sync.models import UserAccount
from webmail_sync.store import MailStore

logger = structlog.get_logger()

# Used when the token endpoint does not report an expiry.
_DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


@dataclass(frozen=True)
class RefreshedToken:
    """Result of a refresh_token grant."""

    access_token: str
    expires_at: int
    refresh_token: str | None = None


class TokenManager:
    """Hands out valid access tokens, refreshing them through Google's token endpoint.

    Refreshes for one user are serialized; a caller that waited on another
    caller's refresh reuses its result instead of refreshing again.
    """

    def __init__(
        self,
        store: MailStore,
        oauth: OAuthClientConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Create a token manager.

        Args:
            store: Store holding the user records.
            oauth: OAuth client credentials and refresh policy.
            clock: Source of the current epoch time in seconds.
        """

        self._store = store
        self._oauth = oauth
        self._clock = clock
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_valid_access_token(self, user_id: str) -> str:
        """Return an access token good for at least the refresh margin.

        Raises:
            NotAuthenticated: If the user does not exist.
            AuthExpired: If the token is expired and cannot be refreshed.
        """

        user = self._load_user(user_id)
        if self._is_fresh(user):
            return user.google_access_token  # type: ignore[return-value]

        async with self._locks[user_id]:
            user = self._load_user(user_id)
            if self._is_fresh(user):
                return user.google_access_token  # type: ignore[return-value]

            if not user.google_refresh_token:
                if user.google_access_token and self._not_yet_expired(user):
                    logger.warning("access_token_expiring_without_refresh_token", user_id=user_id)
                    return user.google_access_token
                logger.warning("access_token_expired_without_refresh_token", user_id=user_id)
                raise AuthExpired()

            return await self._refresh(user)

    async def force_refresh(self, user_id: str, stale_token: str | None = None) -> str:
        """Refresh after Gmail rejected ``stale_token``.

        If another caller already replaced ``stale_token`` with a fresh token,
        that token is returned without another refresh.
        """

        async with self._locks[user_id]:
            user = self._load_user(user_id)
            if (
                user.google_access_token
                and user.google_access_token != stale_token
                and self._is_fresh(user)
            ):
                return user.google_access_token

            if not user.google_refresh_token:
                logger.warning("forced_refresh_without_refresh_token", user_id=user_id)
                raise AuthExpired()

            return await self._refresh(user)

    def _load_user(self, user_id: str) -> UserAccount:
        user = self._store.get_user(user_id)
        if user is None:
            raise NotAuthenticated()
        return user

    def _is_fresh(self, user: UserAccount) -> bool:
        if not user.google_access_token or user.token_expires_at is None:
            return False
        return user.token_expires_at > self._clock() + self._oauth.refresh_margin_seconds

    def _not_yet_expired(self, user: UserAccount) -> bool:
        return user.token_expires_at is not None and user.token_expires_at > self._clock()

    async def _refresh(self, user: UserAccount) -> str:
        refresh_token = user.google_refresh_token
        if not refresh_token:
            logger.warning("access_token_refresh_without_refresh_token", user_id=user.id)
            raise AuthExpired()

        logger.info("access_token_refresh_started", user_id=user.id)

        try:
            refreshed = await asyncio.wait_for(
                asyncio.to_thread(self._exchange_refresh_token, refresh_token),
                timeout=self._oauth.timeout_seconds,
            )
        except (GoogleAuthError, asyncio.TimeoutError) as exc:
            logger.warning("access_token_refresh_failed", user_id=user.id, error=str(exc))
            raise AuthExpired() from exc

        self._store.update_user_tokens(
            user.id,
            access_token=refreshed.access_token,
            expires_at=refreshed.expires_at,
            refresh_token=refreshed.refresh_token,
        )
        logger.info("access_token_refreshed", user_id=user.id, expires_at=refreshed.expires_at)
        return refreshed.access_token

    def _exchange_refresh_token(self, refresh_token: str) -> RefreshedToken:
        # Imported lazily to keep import-time cost low and tests fast.
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials

        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self._oauth.token_uri,
            client_id=self._oauth.client_id,
            client_secret=self._oauth.client_secret,
        )
        creds.refresh(Request())

        if not creds.token:
            raise GoogleAuthError("token endpoint returned no access token")

        # google-auth reports expiry as a naive UTC datetime.
        if creds.expiry is not None:
            expires_at = calendar.timegm(creds.expiry.utctimetuple())
        else:
            expires_at = int(self._clock()) + _DEFAULT_TOKEN_LIFETIME_SECONDS

        return RefreshedToken(
            access_token=creds.token,
            expires_at=int(expires_at),
            refresh_token=creds.refresh_token,
        )
