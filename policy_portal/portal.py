"""Composition root: one HttpClient, store and SessionManager per process"""

import logging
from typing import Any, Optional

import httpx

from policy_portal.config import settings
from policy_portal.domain.aggregation import AggregationEngine
from policy_portal.domain.exceptions import PortalError
from policy_portal.domain.models import Dashboard, InsuranceCategory, PackageViewModel, StandalonePolicyViewModel
from policy_portal.infrastructure.auth.session_manager import SessionExpiredCallback, SessionManager
from policy_portal.infrastructure.clients.http import HttpClient
from policy_portal.infrastructure.clients.policy_api import PolicyApi
from policy_portal.infrastructure.storage.credential_store import CredentialStore
from policy_portal.infrastructure.storage.session import create_session_factory, create_storage_engine

logger = logging.getLogger(__name__)


class PortalClient:
    """
    Client runtime wired together for the UI.

    Construct once per process and pass by reference; the refresh protocol
    relies on there being a single SessionManager.
    """

    def __init__(
        self,
        base_url: str | None = None,
        storage_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        refresh_timeout: float | None = None,
        on_session_expired: Optional[SessionExpiredCallback] = None,
    ):
        engine = create_storage_engine(storage_url or settings.storage_url)
        self.store = CredentialStore(create_session_factory(engine))
        self.http = HttpClient(base_url=base_url, transport=transport)
        self.session = SessionManager(self.store, self.http, refresh_timeout=refresh_timeout)
        if on_session_expired is not None:
            self.session.on_session_expired(on_session_expired)
        self.api = PolicyApi(self.http)
        self.engine = AggregationEngine(
            fetch_summaries=self.api.get_package_summaries,
            fetch_detail=self.api.get_package_detail,
            fetch_applications=self.api.get_applications,
        )
        self.session.restore()

    async def load_dashboard(self) -> Dashboard:
        """Rebuild every package and standalone-policy view model"""
        return await self.engine.aggregate()

    async def pay_package(self, package: PackageViewModel) -> Dashboard:
        if not package.can_pay:
            raise PortalError(f"Package {package.id} is not payable in status {package.status}")
        await self.api.pay_package(package.id)
        return await self.load_dashboard()

    async def cancel_package(self, package: PackageViewModel) -> Dashboard:
        await self.api.cancel_package(package.id)
        return await self.load_dashboard()

    async def pay_application(self, policy: StandalonePolicyViewModel) -> Dashboard:
        if not policy.can_pay or policy.category is InsuranceCategory.UNKNOWN:
            raise PortalError(f"Application {policy.id} cannot be paid on its own")
        await self.api.pay_application(policy.category, policy.id)
        return await self.load_dashboard()

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "PortalClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
