"""
Aggregation engine - reconciles packages and applications from several endpoints.

The backend exposes a user's insurance data through a summary list, a per-package
detail endpoint and one applications endpoint per category. None of them is
complete on its own and their shapes drift, so every pass rebuilds the view
models from scratch out of whatever each source returned.
"""

import asyncio
import logging
import time
import warnings
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from policy_portal.domain.exceptions import (
    ApiError,
    PartialAggregationError,
    TransientNetworkError,
    UnknownShapeWarning,
)
from policy_portal.domain.models import (
    Application,
    Dashboard,
    InsuranceCategory,
    PackageSummary,
    PackageViewModel,
    StandalonePolicyViewModel,
)
from policy_portal.domain.normalization import (
    find_application_array,
    normalize_application,
    parse_package_summary,
)
from policy_portal.domain.view_models import (
    build_package_view_model,
    build_standalone_view_model,
    is_independently_payable,
)
from policy_portal.infrastructure.observability.logging import log_aggregation
from policy_portal.infrastructure.observability.metrics import (
    category_fetch_failures_counter,
    package_detail_failures_counter,
)

logger = logging.getLogger(__name__)

FetchSummaries = Callable[[], Awaitable[List[Dict[str, Any]]]]
FetchDetail = Callable[[str], Awaitable[Dict[str, Any]]]
FetchApplications = Callable[[InsuranceCategory], Awaitable[List[Dict[str, Any]]]]

# Categories with a dedicated applications endpoint
FETCHABLE_CATEGORIES: Tuple[InsuranceCategory, ...] = (
    InsuranceCategory.KASKO,
    InsuranceCategory.OSAGO,
    InsuranceCategory.TRAVEL,
    InsuranceCategory.HEALTH,
    InsuranceCategory.PROPERTY,
)

# Failures contained to a single package or category
RECOVERABLE_ERRORS = (ApiError, TransientNetworkError)


def _resolve_unknown_keys(
    app: Application,
    by_category: Dict[InsuranceCategory, List[Application]],
) -> List[tuple]:
    """
    Keys of the category applications an uncategorized package application stands for.

    Ids are only unique per category. When several categories return the id,
    a matching amount picks one; if that does not narrow it down, every
    candidate stays hidden rather than risk showing a packaged application twice.
    """
    candidates = [
        candidate
        for applications in by_category.values()
        for candidate in applications
        if candidate.id == app.id
    ]
    if len(candidates) > 1:
        same_amount = [candidate for candidate in candidates if candidate.amount == app.amount]
        if len(same_amount) == 1:
            candidates = same_amount
        else:
            logger.warning(
                "Ambiguous uncategorized package application",
                extra={"application_id": app.id, "candidates": len(candidates)},
            )
    return [candidate.key for candidate in candidates]


def _dedupe(applications: Iterable[Application]) -> List[Application]:
    seen: Set[tuple] = set()
    unique = []
    for app in applications:
        if app.id:
            if app.key in seen:
                continue
            seen.add(app.key)
        unique.append(app)
    return unique


class AggregationEngine:
    """Builds package and standalone-policy view models from backend fetchers"""

    def __init__(
        self,
        fetch_summaries: FetchSummaries,
        fetch_detail: FetchDetail,
        fetch_applications: FetchApplications,
        categories: Sequence[InsuranceCategory] = FETCHABLE_CATEGORIES,
    ):
        self.fetch_summaries = fetch_summaries
        self.fetch_detail = fetch_detail
        self.fetch_applications = fetch_applications
        self.categories = tuple(categories)

    async def aggregate(self) -> Dashboard:
        """
        Run one full aggregation pass.

        Raises:
            ApiError, TransientNetworkError: Only when the summary list itself fails
            SessionError: When the session cannot be refreshed
        """
        start_time = time.time()

        summaries = await self._load_summaries()
        packages, by_category = await asyncio.gather(
            asyncio.gather(*(self.build_package(summary) for summary in summaries)),
            self._load_category_applications(),
        )
        packages = list(packages)
        standalone = self.select_standalone(packages, by_category)

        log_aggregation(
            package_count=len(packages),
            standalone_count=len(standalone),
            failed_packages=sum(1 for pkg in packages if pkg.has_error),
            duration_ms=(time.time() - start_time) * 1000,
        )
        return Dashboard(packages=packages, standalone_policies=standalone)

    async def _load_summaries(self) -> List[PackageSummary]:
        payload = await self.fetch_summaries()
        if not isinstance(payload, list):
            raise ApiError("Package summary list is not an array")

        summaries = []
        for entry in payload:
            if not isinstance(entry, dict) or entry.get("id") is None:
                logger.warning("Skipping package summary without id")
                continue
            summaries.append(parse_package_summary(entry))
        return summaries

    async def build_package(self, summary: PackageSummary) -> PackageViewModel:
        """
        Resolve the applications of one package and derive its view model.

        Embedded applications win; otherwise the detail endpoint is probed.
        A failed detail fetch yields a summary-only view model flagged with
        the error instead of failing the whole pass.
        """
        raw_applications = summary.raw_applications or []
        detail_error: Optional[str] = None

        if not raw_applications:
            try:
                detail = await self.fetch_detail(summary.id)
                raw_applications = self._applications_from_detail(summary.id, detail)
            except RECOVERABLE_ERRORS as e:
                error = PartialAggregationError(summary.id, e)
                package_detail_failures_counter.inc()
                logger.warning(str(error), extra={"package_id": summary.id})
                detail_error = "Could not load package details"

        applications = _dedupe(normalize_application(raw) for raw in raw_applications)
        return build_package_view_model(summary, applications, detail_error)

    @staticmethod
    def _applications_from_detail(package_id: str, detail: Any) -> List[Dict[str, Any]]:
        if not isinstance(detail, dict):
            raise ApiError(f"Package {package_id} detail is not an object")

        applications, shape_known = find_application_array(detail)
        if not shape_known:
            warnings.warn(
                f"No application array found for package {package_id}",
                UnknownShapeWarning,
                stacklevel=2,
            )
        return applications

    async def _load_category_applications(self) -> Dict[InsuranceCategory, List[Application]]:
        results = await asyncio.gather(
            *(self.fetch_applications(category) for category in self.categories),
            return_exceptions=True,
        )

        by_category: Dict[InsuranceCategory, List[Application]] = {}
        for category, result in zip(self.categories, results):
            if isinstance(result, RECOVERABLE_ERRORS):
                category_fetch_failures_counter.labels(category=category.value).inc()
                logger.warning(
                    f"Applications fetch failed: {result}",
                    extra={"category": category.value},
                )
                result = []
            elif isinstance(result, BaseException):
                raise result
            elif not isinstance(result, list):
                logger.warning("Applications payload is not an array", extra={"category": category.value})
                result = []

            by_category[category] = [
                normalize_application(raw, hint=category)
                for raw in result
                if isinstance(raw, dict)
            ]
        return by_category

    @staticmethod
    def select_standalone(
        packages: Iterable[PackageViewModel],
        by_category: Dict[InsuranceCategory, List[Application]],
    ) -> List[StandalonePolicyViewModel]:
        """
        Promote applications that live outside every package.

        An application already shown inside a package card is never shown
        again as a bare row. Package applications whose category could not be
        resolved are matched to the category endpoint that returned their id.
        """
        accounted: Set[tuple] = set()
        for package in packages:
            for app in package.applications:
                if app.category is InsuranceCategory.UNKNOWN and app.id:
                    accounted.update(_resolve_unknown_keys(app, by_category))
                else:
                    accounted.add(app.key)

        standalone = []
        seen: Set[tuple] = set()
        for category in sorted(by_category, key=lambda c: c.value):
            for app in sorted(by_category[category], key=lambda a: a.id):
                if not app.id:
                    logger.warning("Skipping application without id", extra={"category": category.value})
                    continue
                if app.key in accounted:
                    continue
                if app.key in seen or not is_independently_payable(app):
                    continue
                seen.add(app.key)
                standalone.append(build_standalone_view_model(app))
        return standalone
