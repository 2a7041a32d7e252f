"""
Configuration schema (``supply_config.schema``).

Frozen dataclasses describing one configuration set.  Every field is
validated in ``__post_init__`` so an invalid set can never be constructed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

_PREFIX_FIELDS = ("purchase_bill", "sale_bill", "stock_return", "transport", "payment")


@dataclass(frozen=True)
class NumberPrefixes:
    """Prefixes of issued document numbers, e.g. ``SB`` -> ``SB-000001``."""

    purchase_bill: str = "PB"
    sale_bill: str = "SB"
    stock_return: str = "RT"
    transport: str = "TR"
    payment: str = "PY"

    def __post_init__(self) -> None:
        values = [getattr(self, name) for name in _PREFIX_FIELDS]
        for name, value in zip(_PREFIX_FIELDS, values):
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"number_prefixes.{name} must be a non-empty string")
            if "-" in value:
                raise ValueError(f"number_prefixes.{name} must not contain '-'")
        if len(set(values)) != len(values):
            raise ValueError(f"number_prefixes must be distinct, got {values}")


@dataclass(frozen=True)
class SupplyConfig:
    """
    Runtime settings of the supply engine.

    Guarantees:
        - ``branches`` is non-empty and duplicate-free.
        - ``default_branch`` is one of ``branches``.
        - Retry settings are non-negative.
    """

    config_id: str = "default"
    version: int = 1
    branches: tuple[str, ...] = ("Slemany", "Erbil")
    default_branch: str = "Slemany"
    currency: str = "IQD"
    money_places: int = 2
    max_conflict_retries: int = 3
    retry_backoff_ms: int = 25
    number_prefixes: NumberPrefixes = field(default_factory=NumberPrefixes)
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.branches:
            raise ValueError("branches must not be empty")
        if len(set(self.branches)) != len(self.branches):
            raise ValueError(f"branches must be unique, got {list(self.branches)}")
        if self.default_branch not in self.branches:
            raise ValueError(
                f"default_branch '{self.default_branch}' is not one of {list(self.branches)}"
            )
        if not self.currency or len(self.currency) != 3:
            raise ValueError(f"currency must be a 3-letter code, got '{self.currency}'")
        if self.money_places < 0:
            raise ValueError("money_places must be >= 0")
        if self.max_conflict_retries < 0:
            raise ValueError("max_conflict_retries must be >= 0")
        if self.retry_backoff_ms < 0:
            raise ValueError("retry_backoff_ms must be >= 0")

    def is_known_branch(self, branch: str) -> bool:
        return branch in self.branches
