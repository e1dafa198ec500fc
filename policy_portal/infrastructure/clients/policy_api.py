"""Policy backend HTTP client for packages and applications"""

import logging
from typing import Any, Dict, List

import httpx

from policy_portal.domain.exceptions import ApiError
from policy_portal.domain.models import InsuranceCategory
from policy_portal.infrastructure.clients.http import HttpClient

logger = logging.getLogger(__name__)


class PolicyApi:
    """Typed access to the package and application endpoints"""

    def __init__(self, http: HttpClient):
        self.http = http

    async def _call(self, method: str, url: str, **kwargs: Any) -> Any:
        """
        Send a request and decode the JSON body.

        Raises:
            ApiError: On non-2xx status or invalid JSON
            TransientNetworkError: On timeouts and connection failures
            SessionError: When the session could not be refreshed
        """
        response = await self.http.request(method, url, **kwargs)
        try:
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ApiError(f"{method} {url} failed: {e.response.status_code}", status_code=e.response.status_code) from e
        except ValueError as e:
            raise ApiError(f"Invalid JSON from {method} {url}: {e}", status_code=response.status_code) from e

    async def get_package_summaries(self) -> List[Dict[str, Any]]:
        """Fetch the package summary list"""
        data = await self._call("GET", "/packages/summary-list")
        if not isinstance(data, list):
            raise ApiError("Package summary list is not an array")
        return data

    async def get_package_detail(self, package_id: str) -> Dict[str, Any]:
        """Fetch the detail payload of one package"""
        data = await self._call("GET", f"/packages/{package_id}")
        if not isinstance(data, dict):
            raise ApiError(f"Package {package_id} detail is not an object")
        return data

    async def get_applications(self, category: InsuranceCategory) -> List[Dict[str, Any]]:
        """Fetch the user's applications for one insurance category"""
        data = await self._call("GET", f"/applications/{category.value.lower()}")
        if data is None:
            return []
        if not isinstance(data, list):
            raise ApiError(f"Applications for {category.value} are not an array")
        return data

    async def pay_package(self, package_id: str) -> Any:
        logger.info("Paying package", extra={"package_id": package_id})
        return await self._call("POST", f"/packages/{package_id}/pay")

    async def cancel_package(self, package_id: str) -> Any:
        logger.info("Cancelling package", extra={"package_id": package_id})
        return await self._call("POST", f"/packages/{package_id}/cancel")

    async def pay_application(self, category: InsuranceCategory, application_id: str) -> Any:
        logger.info("Paying application", extra={"category": category.value, "application_id": application_id})
        return await self._call("POST", f"/applications/{category.value.lower()}/{application_id}/pay")
