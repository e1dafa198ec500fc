"""Domain models - pure Python dataclasses representing credentials and insurance data"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class InsuranceCategory(str, Enum):
    """Canonical insurance category of an application"""

    KASKO = "KASKO"
    OSAGO = "OSAGO"
    TRAVEL = "TRAVEL"
    HEALTH = "HEALTH"
    PROPERTY = "PROPERTY"
    UNKNOWN = "UNKNOWN"

    @property
    def label(self) -> str:
        return CATEGORY_LABELS[self]


CATEGORY_LABELS = {
    InsuranceCategory.KASKO: "KASKO",
    InsuranceCategory.OSAGO: "OSAGO",
    InsuranceCategory.TRAVEL: "Travel insurance",
    InsuranceCategory.HEALTH: "Health insurance",
    InsuranceCategory.PROPERTY: "Property insurance",
    InsuranceCategory.UNKNOWN: "Unknown type",
}


@dataclass(frozen=True)
class UserProfile:
    """Profile returned alongside every token envelope"""

    email: str
    first_name: str = ""
    last_name: str = ""
    role: str = "USER"
    level: str = "WOODEN"
    policy_count: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def has_role(self, required: str) -> bool:
        """Role check tolerant of the ROLE_ prefix"""
        if not self.role:
            return False
        return self.role.upper() in {required, f"ROLE_{required}"}

    @property
    def is_admin(self) -> bool:
        return self.has_role("ADMIN")

    @property
    def is_moderator(self) -> bool:
        return self.has_role("MODERATOR")


@dataclass(frozen=True)
class Credential:
    """Access/refresh token pair plus the profile they were issued for"""

    access_token: str
    refresh_token: str
    profile: UserProfile
    generation: int = 0

    def __post_init__(self) -> None:
        if not self.access_token or not self.refresh_token:
            raise ValueError("Credential requires both access and refresh tokens")

    def __repr__(self) -> str:
        return f"Credential(email={self.profile.email!r}, generation={self.generation})"


@dataclass
class Application:
    """Policy application normalized from any backend shape"""

    id: str
    category: InsuranceCategory
    amount: Decimal
    status: str
    display_name: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def key(self) -> tuple:
        """Identity across sources; ids are only unique per category"""
        return (self.category, self.id)


@dataclass
class PackageSummary:
    """Package as returned by the summary list endpoint"""

    id: str
    name: str
    description: str
    base_price: Decimal
    discount: int
    status: str
    created_at: Optional[datetime] = None
    raw_applications: Optional[List[Dict[str, Any]]] = None


@dataclass(frozen=True)
class StatusDisplay:
    """Label and semantic severity for a status badge"""

    label: str
    severity: str  # success | warning | error | info | default


@dataclass
class PackageViewModel:
    """Displayable, action-gated package card"""

    id: str
    name: str
    description: str
    status: str
    discount: int
    applications: List[Application]
    total_amount: Decimal
    discounted_amount: Decimal
    display_status: StatusDisplay
    can_pay: bool
    can_continue_setup: bool
    can_cancel: bool
    detail_error: Optional[str] = None

    @property
    def has_error(self) -> bool:
        return self.detail_error is not None


@dataclass
class StandalonePolicyViewModel:
    """Application created outside any package, payable on its own"""

    id: str
    category: InsuranceCategory
    amount: Decimal
    status: str
    display_status: StatusDisplay
    display_name: Optional[str] = None
    can_pay: bool = True


@dataclass
class Dashboard:
    """Output of one aggregation pass"""

    packages: List[PackageViewModel]
    standalone_policies: List[StandalonePolicyViewModel]

    @property
    def has_partial_failures(self) -> bool:
        return any(pkg.has_error for pkg in self.packages)
