"""Executing googleapiclient requests off the event loop with retry."""

import asyncio
import threading
from typing import Any, Callable, Optional

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.errors import HttpError

from finsync.utils.errors import AuthExpiredError
from finsync.utils.logging import get_logger
from finsync.utils.retry import RetryPolicy, with_retry

logger = get_logger(__name__)

AuthExpiredCallback = Callable[[], None]
HttpFactory = Callable[[], Any]


def authorized_http_factory(credentials: Credentials) -> HttpFactory:
    """A new authorized ``httplib2.Http`` per call; httplib2 objects are not thread-safe."""

    def make_http() -> AuthorizedHttp:
        return AuthorizedHttp(credentials, http=httplib2.Http())

    return make_http


class RequestExecutor:
    """
    Runs googleapiclient requests in worker threads.

    With an ``http_factory`` every request executes on its own transport, so
    requests run in parallel. Without one, requests share the resource's
    built-in transport and are executed one at a time.
    """

    def __init__(
        self,
        retry: RetryPolicy,
        http_factory: Optional[HttpFactory] = None,
        on_auth_expired: Optional[AuthExpiredCallback] = None,
    ) -> None:
        self.retry = retry
        self.http_factory = http_factory
        self.on_auth_expired = on_auth_expired
        self._shared_http_lock = threading.Lock()

    def _execute_blocking(self, build_request: Callable[[], Any]) -> Any:
        request = build_request()
        if self.http_factory is not None:
            return request.execute(http=self.http_factory())
        with self._shared_http_lock:
            return request.execute()

    async def execute(self, build_request: Callable[[], Any], operation: str) -> Any:
        """
        Execute a request, retrying transient failures.

        ``build_request`` is called once per attempt so every retry sends a
        fresh HttpRequest. A 401 is reported through ``on_auth_expired`` and
        raised as AuthExpiredError without further attempts.
        """

        async def attempt() -> Any:
            try:
                return await asyncio.to_thread(self._execute_blocking, build_request)
            except HttpError as e:
                if e.resp.status == 401:
                    logger.warning("Google API rejected the token", operation=operation)
                    if self.on_auth_expired is not None:
                        self.on_auth_expired()
                    raise AuthExpiredError() from e
                raise

        return await with_retry(attempt, self.retry, operation=operation)
