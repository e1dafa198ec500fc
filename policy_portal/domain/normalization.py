"""
Normalization of heterogeneous backend payloads into canonical domain values.

The backend exposes the same concepts under different field names depending on
which endpoint produced the payload. Everything here is a pure function over
plain mappings so the aggregation engine never has to know about shape variance.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from policy_portal.domain.models import Application, InsuranceCategory, PackageSummary
from policy_portal.utils.money import to_money

logger = logging.getLogger(__name__)

# Probe order for the application array on a package payload
APPLICATION_ARRAY_FIELDS: Tuple[str, ...] = (
    "applications",
    "applicationsInPackage",
    "packageApplications",
    "policyApplications",
    "items",
)

AMOUNT_FIELDS: Tuple[str, ...] = ("calculatedAmount", "amount", "price", "totalAmount")

TYPE_FIELDS: Tuple[str, ...] = ("applicationType", "type", "category", "insuranceType")

ID_FIELDS: Tuple[str, ...] = ("id", "applicationId")

CATEGORY_ALIASES: Dict[str, InsuranceCategory] = {
    "KASKO": InsuranceCategory.KASKO,
    "КАСКО": InsuranceCategory.KASKO,
    "OSAGO": InsuranceCategory.OSAGO,
    "ОСАГО": InsuranceCategory.OSAGO,
    "TRAVEL": InsuranceCategory.TRAVEL,
    "ПУТЕШЕСТВИЯ": InsuranceCategory.TRAVEL,
    "HEALTH": InsuranceCategory.HEALTH,
    "ЗДОРОВЬЕ": InsuranceCategory.HEALTH,
    "PROPERTY": InsuranceCategory.PROPERTY,
    "REALESTATE": InsuranceCategory.PROPERTY,
    "REAL_ESTATE": InsuranceCategory.PROPERTY,
    "APARTMENT": InsuranceCategory.PROPERTY,
    "MORTGAGE": InsuranceCategory.PROPERTY,
    "НЕДВИЖИМОСТЬ": InsuranceCategory.PROPERTY,
}


def _has_any(*fields: str) -> Callable[[Mapping[str, Any]], bool]:
    def predicate(payload: Mapping[str, Any]) -> bool:
        return any(payload.get(name) not in (None, "") for name in fields)

    return predicate


_VEHICLE = _has_any("carMake", "carModel", "vinNumber", "licensePlate")
_OSAGO_ONLY = _has_any("enginePower", "registrationCertificate", "regionRegistration", "hasAccidentsLastYear")


def _is_osago(payload: Mapping[str, Any]) -> bool:
    return _VEHICLE(payload) and _OSAGO_ONLY(payload)


# Versioned inference table, evaluated top to bottom. Append new categories;
# order matters where field sets overlap (travel forms also ask about chronic
# diseases, OSAGO forms are a superset of the vehicle fields).
CATEGORY_INFERENCE_RULES_VERSION = 2
CATEGORY_INFERENCE_RULES: Tuple[Tuple[Callable[[Mapping[str, Any]], bool], InsuranceCategory], ...] = (
    (_is_osago, InsuranceCategory.OSAGO),
    (_VEHICLE, InsuranceCategory.KASKO),
    (_has_any("destinationCountry", "travelStartDate", "travelEndDate"), InsuranceCategory.TRAVEL),
    (_has_any("propertyType", "propertyArea", "propertyValue", "cadastralNumber"), InsuranceCategory.PROPERTY),
    (_has_any("hasChronicDiseases", "chronicDiseasesDetails", "hasDisabilities", "snils"), InsuranceCategory.HEALTH),
)


def parse_category(value: Any) -> Optional[InsuranceCategory]:
    """Map a free-form type label onto a category, None if unrecognized"""
    if value is None:
        return None
    if isinstance(value, InsuranceCategory):
        return value
    text = str(value).strip().upper()
    return CATEGORY_ALIASES.get(text)


def infer_category(
    payload: Mapping[str, Any],
    hint: Optional[InsuranceCategory] = None,
) -> InsuranceCategory:
    """
    Resolve the canonical category of an application payload.

    Order:
    1. Explicit type field (first recognized alias)
    2. Category of the endpoint that produced the payload
    3. Namespaced displayName prefix ("KASKO: Toyota Camry")
    4. Field-presence rules in CATEGORY_INFERENCE_RULES
    5. InsuranceCategory.UNKNOWN
    """
    for name in TYPE_FIELDS:
        category = parse_category(payload.get(name))
        if category is not None:
            return category

    if hint is not None and hint is not InsuranceCategory.UNKNOWN:
        return hint

    display_name = payload.get("displayName")
    if isinstance(display_name, str) and ":" in display_name:
        category = parse_category(display_name.split(":", 1)[0])
        if category is not None:
            return category

    # Form data is sometimes nested under "data"
    nested = payload.get("data")
    probe = {**nested, **payload} if isinstance(nested, Mapping) else payload
    for predicate, category in CATEGORY_INFERENCE_RULES:
        if predicate(probe):
            return category

    return InsuranceCategory.UNKNOWN


def canonical_amount(payload: Mapping[str, Any]) -> Decimal:
    """First non-empty, non-negative amount alias, defaulting to zero"""
    for name in AMOUNT_FIELDS:
        amount = to_money(payload.get(name))
        if amount is not None and amount >= 0:
            return amount
    return Decimal("0.00")


def canonical_status(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().upper()


def normalize_application(
    payload: Mapping[str, Any],
    hint: Optional[InsuranceCategory] = None,
) -> Application:
    """Build a canonical Application from any backend application shape"""
    raw_id = next((payload[name] for name in ID_FIELDS if payload.get(name) not in (None, "")), "")
    display_name = payload.get("displayName")
    return Application(
        id=str(raw_id),
        category=infer_category(payload, hint),
        amount=canonical_amount(payload),
        status=canonical_status(payload.get("status")),
        display_name=str(display_name) if display_name else None,
        raw=dict(payload),
    )


def find_application_array(
    payload: Mapping[str, Any],
    fields: Sequence[str] = APPLICATION_ARRAY_FIELDS,
) -> Tuple[List[Dict[str, Any]], bool]:
    """
    Probe candidate fields for the first non-empty application array.

    Returns (applications, shape_known). An empty array does not stop the
    probe but still counts as a known shape, so a package that legitimately
    has no applications is not reported as malformed.
    """
    shape_known = False
    for name in fields:
        value = payload.get(name)
        if not isinstance(value, list):
            continue
        shape_known = True
        items = [item for item in value if isinstance(item, Mapping)]
        if items:
            return [dict(item) for item in items], True
    return [], shape_known


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable createdAt value", extra={"value": str(value)})
        return None


def _parse_discount(value: Any) -> int:
    try:
        return int(Decimal(str(value))) if value not in (None, "") else 0
    except (ArithmeticError, ValueError):
        return 0


def parse_package_summary(payload: Mapping[str, Any]) -> PackageSummary:
    """
    Parse one entry of the summary list.

    Raises:
        KeyError: When the entry has no id
    """
    embedded, _ = find_application_array(payload)
    return PackageSummary(
        id=str(payload["id"]),
        name=str(payload.get("name") or ""),
        description=str(payload.get("description") or ""),
        base_price=to_money(payload.get("basePrice")) or Decimal("0.00"),
        discount=_parse_discount(payload.get("discount")),
        status=canonical_status(payload.get("status")),
        created_at=_parse_datetime(payload.get("createdAt")),
        raw_applications=embedded or None,
    )
