"""Verification rule definitions."""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from bulkverify.config import Settings, settings as default_settings


class Criterion(str, Enum):
    """Independent checks applied to every candidate."""

    PRICE = "price"
    REVIEWS = "reviews"
    RATING = "rating"
    PRIME = "prime"  # fulfillment eligibility
    SALES_RANK = "sales_rank"  # popularity
    BRAND = "brand"
    CATALOG = "catalog"  # already in our catalog


class CriterionState(str, Enum):
    """Outcome of one criterion."""

    SATISFIED = "satisfied"
    VIOLATED = "violated"
    UNKNOWN = "unknown"  # data needed to decide is missing


class Severity(str, Enum):
    """Effect of a criterion outcome on the candidate status."""

    NONE = "none"
    WARNING = "warning"
    FAIL = "fail"


# (criterion, state) -> severity. Satisfied never contributes.
SEVERITY_POLICY: Dict[Criterion, Dict[CriterionState, Severity]] = {
    Criterion.PRICE: {
        CriterionState.VIOLATED: Severity.FAIL,
        CriterionState.UNKNOWN: Severity.FAIL,
    },
    Criterion.REVIEWS: {
        CriterionState.VIOLATED: Severity.FAIL,
        CriterionState.UNKNOWN: Severity.WARNING,
    },
    Criterion.RATING: {
        CriterionState.VIOLATED: Severity.FAIL,
        CriterionState.UNKNOWN: Severity.WARNING,
    },
    Criterion.PRIME: {
        CriterionState.VIOLATED: Severity.FAIL,
    },
    Criterion.SALES_RANK: {
        CriterionState.VIOLATED: Severity.WARNING,
        CriterionState.UNKNOWN: Severity.NONE,
    },
    Criterion.BRAND: {
        CriterionState.VIOLATED: Severity.FAIL,
    },
    Criterion.CATALOG: {
        CriterionState.VIOLATED: Severity.WARNING,
    },
}


def severity_for(criterion: Criterion, state: CriterionState) -> Severity:
    """Look up the severity policy for a criterion outcome."""
    if state == CriterionState.SATISFIED:
        return Severity.NONE
    return SEVERITY_POLICY[criterion].get(state, Severity.NONE)


@dataclass(frozen=True)
class CriterionOutcome:
    """One evaluated criterion with its human-readable reason."""

    criterion: Criterion
    state: CriterionState
    reason: str = ""

    @property
    def severity(self) -> Severity:
        return severity_for(self.criterion, self.state)


def _parse_csv_values(value) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v).strip().lower() for v in value if str(v).strip())
    return tuple(part.strip().lower() for part in str(value).split(",") if part.strip())


def _optional_int(value) -> Optional[int]:
    return None if value is None else int(value)


@dataclass(frozen=True)
class RuleSet:
    """Immutable business thresholds a candidate is verified against."""

    min_price: Decimal = Decimal("3")
    max_price: Decimal = Decimal("25")
    min_reviews: int = 500
    min_rating: float = 3.5
    require_prime: bool = True
    max_sales_rank: Optional[int] = 100000  # None disables the popularity check
    excluded_title_words: Tuple[str, ...] = ()
    markup_multiplier: Decimal = Decimal("1.70")
    # Overrides excluded_title_words when set
    brand_predicate: Optional[Callable[[str], bool]] = field(default=None, compare=False)
    _brand_patterns: Tuple[re.Pattern, ...] = field(
        default=(), init=False, repr=False, compare=False
    )

    def __post_init__(self):
        # Frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "min_price", Decimal(str(self.min_price)))
        object.__setattr__(self, "max_price", Decimal(str(self.max_price)))
        object.__setattr__(self, "markup_multiplier", Decimal(str(self.markup_multiplier)))
        words = _parse_csv_values(self.excluded_title_words)
        object.__setattr__(self, "excluded_title_words", words)
        object.__setattr__(
            self,
            "_brand_patterns",
            tuple(
                re.compile(r"\b" + re.escape(word) + r"\b", re.IGNORECASE)
                for word in words
            ),
        )

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "RuleSet":
        """Build the default rule set from application settings."""
        config = config or default_settings
        return cls(
            min_price=Decimal(str(config.rule_min_price)),
            max_price=Decimal(str(config.rule_max_price)),
            min_reviews=config.rule_min_reviews,
            min_rating=config.rule_min_rating,
            require_prime=config.rule_require_prime,
            max_sales_rank=config.rule_max_sales_rank,
            excluded_title_words=_parse_csv_values(config.rule_excluded_title_words),
            markup_multiplier=Decimal(str(config.rule_markup_multiplier)),
        )

    def is_excluded_brand(self, title: Optional[str]) -> bool:
        """True if the title names an excluded brand or condition word."""
        if not title:
            return False
        if self.brand_predicate is not None:
            return bool(self.brand_predicate(title))
        return any(pattern.search(title) for pattern in self._brand_patterns)

    def validate(self) -> List[str]:
        """
        Check the rule set for inconsistent thresholds.

        Returns:
            List of error messages (empty when valid)
        """
        errors = []
        if self.min_price < 0:
            errors.append("min_price must not be negative")
        if self.min_price > self.max_price:
            errors.append("min_price must be <= max_price")
        if self.min_reviews < 0:
            errors.append("min_reviews must not be negative")
        if not 0 <= self.min_rating <= 5:
            errors.append("min_rating must be between 0 and 5")
        if self.max_sales_rank is not None and self.max_sales_rank <= 0:
            errors.append("max_sales_rank must be positive")
        if self.markup_multiplier <= 1:
            errors.append("markup_multiplier must be greater than 1.0")
        return errors

    def to_dict(self) -> dict:
        """Convert rule set to dictionary."""
        return {
            "min_price": float(self.min_price),
            "max_price": float(self.max_price),
            "min_reviews": self.min_reviews,
            "min_rating": self.min_rating,
            "require_prime": self.require_prime,
            "max_sales_rank": self.max_sales_rank,
            "excluded_title_words": list(self.excluded_title_words),
            "markup_multiplier": float(self.markup_multiplier),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RuleSet":
        """Create a rule set from a dictionary, defaulting missing keys to settings."""
        base = cls.from_settings()
        return cls(
            min_price=Decimal(str(data.get("min_price", base.min_price))),
            max_price=Decimal(str(data.get("max_price", base.max_price))),
            min_reviews=int(data.get("min_reviews", base.min_reviews)),
            min_rating=float(data.get("min_rating", base.min_rating)),
            require_prime=bool(data.get("require_prime", base.require_prime)),
            max_sales_rank=_optional_int(data.get("max_sales_rank", base.max_sales_rank)),
            excluded_title_words=data.get("excluded_title_words", base.excluded_title_words),
            markup_multiplier=Decimal(str(data.get("markup_multiplier", base.markup_multiplier))),
        )
