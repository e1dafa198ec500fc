"""Unit tests for the package/application aggregation engine"""

from decimal import Decimal
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from policy_portal.domain.aggregation import AggregationEngine
from policy_portal.domain.exceptions import (
    ApiError,
    NoSessionError,
    TransientNetworkError,
    UnknownShapeWarning,
)
from policy_portal.domain.models import InsuranceCategory


def make_engine(
    summaries: List[Dict[str, Any]],
    details: Optional[Dict[str, Any]] = None,
    applications: Optional[Dict[InsuranceCategory, Any]] = None,
):
    """Engine over in-memory payloads; exceptions in the maps are raised"""
    details = details or {}
    applications = applications or {}

    async def fetch_detail(package_id: str) -> Dict[str, Any]:
        result = details.get(package_id, {})
        if isinstance(result, Exception):
            raise result
        return result

    async def fetch_applications(category: InsuranceCategory) -> List[Dict[str, Any]]:
        result = applications.get(category, [])
        if isinstance(result, Exception):
            raise result
        return result

    detail_mock = AsyncMock(side_effect=fetch_detail)
    engine = AggregationEngine(
        fetch_summaries=AsyncMock(return_value=summaries),
        fetch_detail=detail_mock,
        fetch_applications=AsyncMock(side_effect=fetch_applications),
    )
    return engine, detail_mock


@pytest.fixture
def summaries() -> List[Dict[str, Any]]:
    return [
        {
            "id": 1,
            "name": "Auto complete",
            "description": "KASKO + OSAGO",
            "basePrice": 30000,
            "discount": 10,
            "status": "PENDING",
            "applications": [
                {"id": 101, "applicationType": "KASKO", "status": "PENDING", "calculatedAmount": 25000},
                {"id": 102, "type": "OSAGO", "status": "PENDING", "amount": "5000.50"},
            ],
        },
        {
            "id": 2,
            "name": "Traveller",
            "description": "Travel",
            "basePrice": 8000,
            "discount": 15,
            "status": "PARTIALLY_COMPLETED",
        },
    ]


async def test_embedded_applications_skip_detail_fetch(summaries):
    engine, detail_mock = make_engine(summaries[:1])

    dashboard = await engine.aggregate()

    package = dashboard.packages[0]
    detail_mock.assert_not_awaited()
    assert [app.category for app in package.applications] == [InsuranceCategory.KASKO, InsuranceCategory.OSAGO]
    assert package.total_amount == Decimal("30000.50")
    assert package.discounted_amount == Decimal("27000.45")
    assert package.can_pay is True
    assert package.can_cancel is True
    assert package.has_error is False


async def test_detail_probe_finds_third_candidate_field(summaries):
    """Applications exposed only under the third probe field still count"""
    engine, detail_mock = make_engine(
        summaries[1:],
        details={
            "2": {
                "id": 2,
                "packageApplications": [
                    {"id": 201, "displayName": "TRAVEL: Turkey", "status": "PENDING", "price": 3000},
                    {"id": 202, "destinationCountry": "Georgia", "status": "PENDING", "totalAmount": 1500},
                ],
            }
        },
    )

    dashboard = await engine.aggregate()

    package = dashboard.packages[0]
    detail_mock.assert_awaited_once_with("2")
    assert package.total_amount == Decimal("4500.00")
    assert package.discounted_amount == Decimal("3825.00")
    assert package.can_pay is False
    assert package.can_continue_setup is True


async def test_empty_candidate_falls_through_to_next(summaries):
    engine, _ = make_engine(
        summaries[1:],
        details={
            "2": {
                "applications": [],
                "applicationsInPackage": [{"id": 5, "type": "HEALTH", "status": "PENDING", "amount": 100}],
            }
        },
    )

    dashboard = await engine.aggregate()

    assert [app.id for app in dashboard.packages[0].applications] == ["5"]


async def test_unknown_detail_shape_resolves_to_empty(summaries):
    engine, _ = make_engine(summaries[1:], details={"2": {"id": 2, "forms": [{"id": 1}]}})

    with pytest.warns(UnknownShapeWarning):
        dashboard = await engine.aggregate()

    package = dashboard.packages[0]
    assert package.applications == []
    assert package.total_amount == Decimal("0.00")
    assert package.has_error is False


@pytest.mark.parametrize("error", [ApiError("boom", status_code=500), TransientNetworkError("timeout")])
async def test_detail_failure_is_isolated(summaries, error):
    """One failing detail fetch flags that package only"""
    summaries.append({"id": 3, "name": "Home", "discount": 0, "status": "PENDING"})
    engine, _ = make_engine(
        summaries,
        details={
            "2": error,
            "3": {"items": [{"id": 301, "propertyType": "apartment", "status": "PENDING", "amount": 900}]},
        },
    )

    dashboard = await engine.aggregate()

    first, second, third = dashboard.packages
    assert not first.has_error and len(first.applications) == 2
    assert second.has_error
    assert second.detail_error == "Could not load package details"
    assert second.applications == []
    assert second.can_cancel is True
    assert not third.has_error
    assert third.applications[0].category == InsuranceCategory.PROPERTY
    assert dashboard.has_partial_failures


async def test_summary_failure_fails_aggregation():
    engine = AggregationEngine(
        fetch_summaries=AsyncMock(side_effect=ApiError("down", status_code=503)),
        fetch_detail=AsyncMock(),
        fetch_applications=AsyncMock(return_value=[]),
    )

    with pytest.raises(ApiError):
        await engine.aggregate()


async def test_session_errors_are_not_contained(summaries):
    engine, _ = make_engine(summaries[1:], details={"2": NoSessionError("gone")})

    with pytest.raises(NoSessionError):
        await engine.aggregate()


async def test_summaries_without_id_are_skipped(summaries):
    engine, _ = make_engine([{"name": "broken"}] + summaries[:1])

    dashboard = await engine.aggregate()

    assert [pkg.id for pkg in dashboard.packages] == ["1"]


async def test_standalone_promotion_and_no_double_counting(summaries):
    """An application shows up in exactly one place"""
    engine, _ = make_engine(
        summaries[:1],
        applications={
            InsuranceCategory.KASKO: [
                {"id": 101, "status": "PENDING", "calculatedAmount": 25000},
                {"id": 105, "status": "APPROVED", "calculatedAmount": 18000},
                {"id": 106, "status": "REJECTED", "calculatedAmount": 1},
            ],
            InsuranceCategory.OSAGO: [{"id": 102, "status": "PENDING", "calculatedAmount": 5000.5}],
            InsuranceCategory.TRAVEL: [{"id": 101, "status": "PENDING", "calculatedAmount": 700}],
        },
    )

    dashboard = await engine.aggregate()

    packaged = {app.key for pkg in dashboard.packages for app in pkg.applications}
    standalone = {(policy.category, policy.id) for policy in dashboard.standalone_policies}
    assert packaged.isdisjoint(standalone)
    # Same id in another category is a different application
    assert standalone == {(InsuranceCategory.KASKO, "105"), (InsuranceCategory.TRAVEL, "101")}
    assert all(policy.can_pay for policy in dashboard.standalone_policies)


async def test_unknown_package_application_matched_by_id(summaries):
    summaries[0]["applications"].append({"id": 150, "status": "PENDING", "amount": 10})
    engine, _ = make_engine(
        summaries[:1],
        applications={InsuranceCategory.HEALTH: [{"id": 150, "status": "PENDING", "calculatedAmount": 10}]},
    )

    dashboard = await engine.aggregate()

    unknown = dashboard.packages[0].applications[-1]
    assert unknown.category == InsuranceCategory.UNKNOWN
    assert dashboard.standalone_policies == []


async def test_failed_category_contributes_nothing(summaries):
    engine, _ = make_engine(
        summaries[:1],
        applications={
            InsuranceCategory.PROPERTY: ApiError("down", status_code=503),
            InsuranceCategory.TRAVEL: TransientNetworkError("timeout"),
            InsuranceCategory.HEALTH: [{"id": 9, "status": "PENDING", "calculatedAmount": 50}],
        },
    )

    dashboard = await engine.aggregate()

    assert [(p.category, p.id) for p in dashboard.standalone_policies] == [(InsuranceCategory.HEALTH, "9")]


async def test_aggregation_is_idempotent(summaries):
    engine, _ = make_engine(
        summaries,
        details={"2": {"packageApplications": [{"id": 201, "type": "TRAVEL", "status": "PENDING", "price": 3000}]}},
        applications={InsuranceCategory.KASKO: [{"id": 105, "status": "APPROVED", "calculatedAmount": 18000}]},
    )

    first = await engine.aggregate()
    second = await engine.aggregate()

    assert first == second
    assert sum(len(pkg.applications) for pkg in second.packages) == 3


async def test_duplicate_applications_collapse(summaries):
    duplicate = {"id": 101, "applicationType": "KASKO", "status": "PENDING", "calculatedAmount": 25000}
    summaries[0]["applications"].append(duplicate)
    engine, _ = make_engine(summaries[:1])

    dashboard = await engine.aggregate()

    assert len(dashboard.packages[0].applications) == 2
    assert dashboard.packages[0].total_amount == Decimal("30000.50")


@pytest.mark.parametrize("discount", [-20, 0, 15, 100, 250])
async def test_discount_bounds(summaries, discount):
    summaries[0]["discount"] = discount
    engine, _ = make_engine(summaries[:1])

    dashboard = await engine.aggregate()

    package = dashboard.packages[0]
    assert Decimal("0") <= package.discounted_amount <= package.total_amount


async def test_negative_amount_keeps_discount_within_total(summaries):
    summaries[0]["applications"] = [{"id": 7, "type": "KASKO", "status": "PENDING", "amount": -500}]
    engine, _ = make_engine(summaries[:1])

    dashboard = await engine.aggregate()

    package = dashboard.packages[0]
    assert package.applications[0].amount == Decimal("0.00")
    assert Decimal("0") <= package.discounted_amount <= package.total_amount


async def test_oversized_amount_does_not_fail_aggregation(summaries):
    oversized = {"id": 103, "type": "TRAVEL", "status": "PENDING", "amount": "1e30", "price": 10}
    summaries[0]["applications"].append(oversized)
    engine, _ = make_engine(summaries[:1])

    dashboard = await engine.aggregate()

    package = dashboard.packages[0]
    assert package.applications[-1].amount == Decimal("10.00")
    assert package.total_amount == Decimal("30010.50")


async def test_unknown_package_application_hides_only_its_own_category(summaries):
    """The same id in an unrelated category stays payable"""
    summaries[0]["applications"].append({"id": 150, "status": "PENDING", "amount": 10})
    engine, _ = make_engine(
        summaries[:1],
        applications={
            InsuranceCategory.HEALTH: [{"id": 150, "status": "PENDING", "calculatedAmount": 10}],
        },
    )
    first = await engine.aggregate()
    assert first.standalone_policies == []

    engine, _ = make_engine(
        summaries[:1],
        applications={
            InsuranceCategory.HEALTH: [{"id": 150, "status": "PENDING", "calculatedAmount": 10}],
            InsuranceCategory.TRAVEL: [{"id": 150, "status": "APPROVED", "calculatedAmount": 3200}],
        },
    )
    second = await engine.aggregate()

    assert [(p.category, p.id) for p in second.standalone_policies] == [(InsuranceCategory.TRAVEL, "150")]


async def test_ambiguous_unknown_package_application_stays_hidden(summaries):
    """Without a distinguishing amount no candidate is promoted"""
    summaries[0]["applications"].append({"id": 150, "status": "PENDING", "amount": 10})
    engine, _ = make_engine(
        summaries[:1],
        applications={
            InsuranceCategory.HEALTH: [{"id": 150, "status": "PENDING", "calculatedAmount": 10}],
            InsuranceCategory.TRAVEL: [{"id": 150, "status": "PENDING", "calculatedAmount": 10}],
        },
    )

    dashboard = await engine.aggregate()

    assert dashboard.standalone_policies == []
