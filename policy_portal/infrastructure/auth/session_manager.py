"""
Session lifecycle: login, single-flight token refresh and transparent retry.

One SessionManager exists per process. It registers two interceptors on the
shared HttpClient: the request interceptor attaches the current bearer token,
the response interceptor turns a 401 into at most one refresh-and-retry.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from policy_portal.config import settings
from policy_portal.domain.exceptions import (
    ApiError,
    NoSessionError,
    RefreshRejectedError,
    SessionError,
    TransientNetworkError,
)
from policy_portal.domain.models import Credential, UserProfile
from policy_portal.infrastructure.clients.http import HttpClient, clone_request
from policy_portal.infrastructure.clients.schemas import AuthEnvelope, LoginRequest, RefreshRequest
from policy_portal.infrastructure.observability.metrics import (
    auth_retry_counter,
    record_refresh,
    refresh_latency_histogram,
)
from policy_portal.infrastructure.storage.credential_store import CredentialStore

logger = logging.getLogger(__name__)

LOGIN_PATH = "/session/login"
REGISTER_PATH = "/session/register"
REFRESH_PATH = "/session/refresh"
LOGOUT_PATH = "/session/logout"

# 401 from these means bad credentials, not an expired access token
AUTH_PATHS = frozenset({LOGIN_PATH, REGISTER_PATH, REFRESH_PATH, LOGOUT_PATH})

RETRIED = "policy_portal.retried"
SENT_TOKEN = "policy_portal.sent_token"

SessionExpiredCallback = Callable[[str], None]


class SessionManager:
    """Keeps one valid access token for all concurrent requests"""

    def __init__(
        self,
        store: CredentialStore,
        http: HttpClient,
        refresh_timeout: float | None = None,
        redirect_path: str | None = None,
    ):
        self.store = store
        self.http = http
        self.refresh_timeout = refresh_timeout or settings.refresh_timeout_seconds
        self.redirect_path = redirect_path or settings.login_redirect_path
        self._refresh_task: Optional[asyncio.Task] = None
        self._expired_callbacks: List[SessionExpiredCallback] = []

        http.add_request_interceptor(self.attach_token)
        http.add_response_interceptor(self.handle_response)

    @property
    def current(self) -> Optional[Credential]:
        return self.store.current

    @property
    def refresh_in_progress(self) -> bool:
        return self._refresh_task is not None

    def on_session_expired(self, callback: SessionExpiredCallback) -> None:
        """Register the navigation hook called with the login path when the session is lost"""
        self._expired_callbacks.append(callback)

    def restore(self) -> Optional[Credential]:
        """Load the credential persisted by a previous run"""
        credential = self.store.load()
        if credential is not None:
            logger.info("Session restored", extra={"email": credential.profile.email})
        return credential

    # Token refresh

    async def ensure_fresh_token(self) -> Credential:
        """
        Exchange the refresh token for a new credential, single-flight.

        Concurrent callers share one refresh call and receive the same
        Credential object (or the same error).

        Raises:
            NoSessionError: No stored credential; no network call is made
            RefreshRejectedError: Refresh endpoint refused the token
            TransientNetworkError: Refresh call failed or timed out
        """
        if self._refresh_task is None:
            credential = self.store.current
            if credential is None:
                record_refresh("no_session")
                self._emit_expired()
                raise NoSessionError("No stored session to refresh")
            self._refresh_task = asyncio.create_task(self._refresh(credential))

        # Shielded so one cancelled waiter does not cancel the shared refresh
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self, credential: Credential) -> Credential:
        body = RefreshRequest(email=credential.profile.email, refresh_token=credential.refresh_token)
        logger.info("Starting token refresh", extra={"email": credential.profile.email})
        try:
            with refresh_latency_histogram.time():
                response = await asyncio.wait_for(
                    self.http.request("POST", REFRESH_PATH, json=body.model_dump(by_alias=True), intercept=False),
                    timeout=self.refresh_timeout,
                )
            if response.is_error:
                raise RefreshRejectedError(
                    f"Refresh rejected with status {response.status_code}",
                    status_code=response.status_code,
                )
            try:
                envelope = AuthEnvelope.model_validate(response.json())
            except (ValidationError, ValueError) as e:
                raise RefreshRejectedError(f"Malformed refresh response: {e}", status_code=response.status_code) from e

            refreshed = self.store.save(envelope.access_token, envelope.refresh_token, envelope.to_profile())

        except asyncio.TimeoutError as e:
            self._fail("network", f"timed out after {self.refresh_timeout}s")
            raise TransientNetworkError(f"Token refresh timed out after {self.refresh_timeout}s") from e
        except TransientNetworkError as e:
            self._fail("network", str(e))
            raise
        except RefreshRejectedError as e:
            self._fail("rejected", str(e))
            raise
        finally:
            self._refresh_task = None

        record_refresh("success")
        logger.info("Token refreshed", extra={"generation": refreshed.generation})
        return refreshed

    def _fail(self, outcome: str, reason: str) -> None:
        record_refresh(outcome)
        logger.warning(f"Token refresh failed, clearing session: {reason}", extra={"outcome": outcome})
        self.store.clear()
        self._emit_expired()

    def _emit_expired(self) -> None:
        for callback in self._expired_callbacks:
            callback(self.redirect_path)

    # Interceptors

    @staticmethod
    def _is_auth_endpoint(request: httpx.Request) -> bool:
        return request.url.path in AUTH_PATHS

    def attach_token(self, request: httpx.Request) -> None:
        """Attach the current bearer token; anonymous requests go out bare"""
        credential = self.store.current
        if credential is None:
            request.headers.pop("Authorization", None)
            request.extensions[SENT_TOKEN] = None
            return
        request.headers["Authorization"] = f"Bearer {credential.access_token}"
        request.extensions[SENT_TOKEN] = credential.access_token

    async def handle_response(self, response: httpx.Response) -> httpx.Response:
        """Refresh and re-issue a request once after a 401"""
        request = response.request
        if response.status_code != 401:
            return response
        if request.extensions.get(RETRIED) or self._is_auth_endpoint(request):
            return response

        logger.info("Authorization failed, refreshing session", extra={"path": request.url.path})
        current = self.store.current
        sent_token = request.extensions.get(SENT_TOKEN)
        if current is None and sent_token is not None:
            # Session was ended while this request was in flight; already signalled
            raise NoSessionError("Session ended while the request was in flight")
        if current is None or current.access_token == sent_token:
            await self.ensure_fresh_token()
        # else: another caller refreshed while this request was in flight

        await response.aclose()
        auth_retry_counter.inc()
        return await self.http.send(clone_request(request, **{RETRIED: True}))

    # Login lifecycle

    def _store_envelope(self, response: httpx.Response, action: str) -> Credential:
        if response.is_error:
            raise ApiError(f"{action} failed with status {response.status_code}", status_code=response.status_code)
        try:
            envelope = AuthEnvelope.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            raise ApiError(f"Invalid {action} response: {e}", status_code=response.status_code) from e

        credential = self.store.save(envelope.access_token, envelope.refresh_token, envelope.to_profile())
        logger.info(f"{action} successful", extra={"email": envelope.email})
        return credential

    async def login(self, email: str, password: str) -> Credential:
        body = LoginRequest(email=email, password=password)
        response = await self.http.request("POST", LOGIN_PATH, json=body.model_dump())
        return self._store_envelope(response, "Login")

    async def register(self, payload: Dict[str, Any]) -> Credential:
        response = await self.http.request("POST", REGISTER_PATH, json=payload)
        return self._store_envelope(response, "Registration")

    async def logout(self) -> None:
        """Notify the backend if possible, then drop the local session"""
        try:
            if self.store.current is not None:
                response = await self.http.request("POST", LOGOUT_PATH)
                if response.is_error:
                    logger.info("Logout call rejected", extra={"status": response.status_code})
        except (TransientNetworkError, SessionError) as e:
            logger.info(f"Logout call failed: {e}")
        finally:
            self.store.clear()

    def update_profile(self, profile: UserProfile) -> Credential:
        """Replace the stored profile wholesale, keeping both tokens"""
        credential = self.store.current
        if credential is None:
            raise NoSessionError("No stored session to update")
        return self.store.save(credential.access_token, credential.refresh_token, profile)
