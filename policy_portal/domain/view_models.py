"""View model derivation - pure projections consumed by the UI"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from policy_portal.domain.models import (
    Application,
    InsuranceCategory,
    PackageSummary,
    PackageViewModel,
    StandalonePolicyViewModel,
    StatusDisplay,
)
from policy_portal.utils.money import quantize

logger = logging.getLogger(__name__)

# Package statuses that allow the payment action
PAYABLE_PACKAGE_STATUSES = frozenset({"PENDING", "COMPLETED"})

# Package is still being filled in form by form
FORMING_PACKAGE_STATUS = "PARTIALLY_COMPLETED"

# Application statuses that can be paid outside of a package
INDEPENDENTLY_PAYABLE_STATUSES = frozenset({"PENDING", "APPROVED"})

PACKAGE_STATUS_DISPLAY: Dict[str, StatusDisplay] = {
    "PENDING": StatusDisplay("Awaiting payment", "warning"),
    "PARTIALLY_COMPLETED": StatusDisplay("Setup in progress", "info"),
    "COMPLETED": StatusDisplay("Ready for payment", "warning"),
    "ACTIVE": StatusDisplay("Active", "success"),
    "CANCELLED": StatusDisplay("Cancelled", "error"),
    "INACTIVE": StatusDisplay("Inactive", "default"),
    "DELETED": StatusDisplay("Deleted", "error"),
}

APPLICATION_STATUS_DISPLAY: Dict[str, StatusDisplay] = {
    "PENDING": StatusDisplay("Pending review", "warning"),
    "IN_REVIEW": StatusDisplay("In review", "info"),
    "NEED_INFO": StatusDisplay("More information required", "warning"),
    "APPROVED": StatusDisplay("Approved", "success"),
    "REJECTED": StatusDisplay("Rejected", "error"),
    "CANCELLED": StatusDisplay("Cancelled", "error"),
    "PAID": StatusDisplay("Paid", "success"),
    "ACTIVE": StatusDisplay("Active", "success"),
    "COMPLETED": StatusDisplay("Completed", "success"),
}

POLICY_STATUS_DISPLAY: Dict[str, StatusDisplay] = {
    "ACTIVE": StatusDisplay("Active", "success"),
    "SUSPENDED": StatusDisplay("Suspended", "warning"),
    "EXPIRED": StatusDisplay("Expired", "default"),
    "CANCELLED": StatusDisplay("Cancelled", "error"),
}


def _lookup(table: Dict[str, StatusDisplay], status: Optional[str]) -> StatusDisplay:
    if not status or not str(status).strip():
        return StatusDisplay("Unknown", "default")
    key = str(status).strip().upper()
    # Unrecognized statuses render as themselves
    return table.get(key, StatusDisplay(str(status), "default"))


def get_package_status_display(status: Optional[str]) -> StatusDisplay:
    return _lookup(PACKAGE_STATUS_DISPLAY, status)


def get_application_status_display(status: Optional[str]) -> StatusDisplay:
    return _lookup(APPLICATION_STATUS_DISPLAY, status)


def get_policy_status_display(status: Optional[str]) -> StatusDisplay:
    return _lookup(POLICY_STATUS_DISPLAY, status)


def calculate_total_amount(applications: Iterable[Application]) -> Decimal:
    """Sum of application amounts, never below zero"""
    total = sum((app.amount for app in applications), Decimal("0"))
    return quantize(max(total, Decimal("0")))


def calculate_discounted_amount(total_amount: Decimal, discount: int | float | Decimal) -> Decimal:
    """
    Apply a percentage discount.

    Discount is clamped to 0-100, so the result always lies in
    [0, total_amount] for a non-negative total.
    """
    total = max(Decimal(total_amount), Decimal("0"))
    rate = min(max(Decimal(str(discount)), Decimal("0")), Decimal("100"))
    discounted = quantize(total * (Decimal("1") - rate / Decimal("100")))
    return min(max(discounted, Decimal("0.00")), quantize(total))


def can_pay_package(status: str, application_count: int) -> bool:
    return status in PAYABLE_PACKAGE_STATUSES and application_count > 0


def can_continue_setup(status: str) -> bool:
    return status == FORMING_PACKAGE_STATUS


def is_independently_payable(application: Application) -> bool:
    return application.status in INDEPENDENTLY_PAYABLE_STATUSES


def build_package_view_model(
    summary: PackageSummary,
    applications: List[Application],
    detail_error: Optional[str] = None,
) -> PackageViewModel:
    total = calculate_total_amount(applications)
    return PackageViewModel(
        id=summary.id,
        name=summary.name,
        description=summary.description,
        status=summary.status,
        discount=summary.discount,
        applications=applications,
        total_amount=total,
        discounted_amount=calculate_discounted_amount(total, summary.discount),
        display_status=get_package_status_display(summary.status),
        can_pay=can_pay_package(summary.status, len(applications)),
        can_continue_setup=can_continue_setup(summary.status),
        can_cancel=True,
        detail_error=detail_error,
    )


def build_standalone_view_model(application: Application) -> StandalonePolicyViewModel:
    return StandalonePolicyViewModel(
        id=application.id,
        category=application.category,
        amount=application.amount,
        status=application.status,
        display_status=get_application_status_display(application.status),
        display_name=application.display_name,
        can_pay=is_independently_payable(application),
    )


def find_package_for_category(
    packages: Iterable[PackageViewModel],
    category: InsuranceCategory,
) -> Optional[PackageViewModel]:
    """
    First package holding an application of the given category.

    Returns None when nothing matches; callers must handle the gap rather
    than receive a made-up package.
    """
    for package in packages:
        if any(app.category == category for app in package.applications):
            return package
    logger.warning("No package matches insurance category", extra={"category": category.value})
    return None
