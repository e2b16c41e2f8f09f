"""
Configuration for stock reconciliation.

Holds the candidate field names read from each kind of record and the
mapping from raw transaction-type labels to issue categories.
Config is declarative JSON - edit the file, not the code.
"""

import json
from dataclasses import dataclass, field, fields as dataclass_fields
from functools import lru_cache
from pathlib import Path
from typing import Optional

from .models import IssueCategory
from .normalize import normalize

DEFAULT_CONFIG_PATH = Path(__file__).parent / "reconcile_config.json"


class ConfigError(ValueError):
    """Raised at load time when the configuration cannot be used."""


@dataclass
class FieldConfig:
    """
    Ordered candidate field names, one list per concern.

    For quantities the first present numeric field of a record wins;
    fields of the same record are never added together.
    """
    item_code: list[str]
    item_name: list[str]
    items: list[str]                 # Nested line-item lists on documents
    request_ref: list[str]
    po_ref: list[str]
    request_date: list[str]
    requested_by: list[str]
    order_ref: list[str]
    closed_flag: list[str]
    requested_qty: list[str]
    ordered_qty: list[str]
    purchase_accepted_qty: list[str]
    vendor_ok_qty: list[str]
    vendor_planned_qty: list[str]
    vendor_issued_qty: list[str]
    vendor_return_ok_qty: list[str]
    vendor_return_rework_qty: list[str]
    vendor_return_reject_qty: list[str]
    issued_qty: list[str]
    issue_category: list[str]
    opening_qty: list[str]
    closing_qty: list[str]
    purchase_store_qty: list[str]
    created_at: list[str]


@dataclass
class MatchSettings:
    """Settings for fuzzy item matching."""
    # Shortest string allowed on the contained side of a substring match
    min_contains_length: int = 3


@dataclass
class Config:
    """Full configuration for the reconciliation engine."""
    fields: FieldConfig
    category_aliases: dict[str, list[str]] = field(default_factory=dict)
    settings: MatchSettings = field(default_factory=MatchSettings)

    # Reverse lookup: normalized raw label -> category (built on load)
    _category_lookup: dict[str, IssueCategory] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        self._build_category_lookup()

    def _build_category_lookup(self):
        """Map every alias, and each category value itself, to its category."""
        self._category_lookup = {}
        for category_key, aliases in self.category_aliases.items():
            try:
                category = IssueCategory(category_key)
            except ValueError:
                raise ConfigError(f"Unknown issue category in aliases: {category_key!r}")
            self._category_lookup[normalize(category.value)] = category
            for alias in aliases:
                self._category_lookup[normalize(alias)] = category
        for category in IssueCategory:
            self._category_lookup.setdefault(normalize(category.value), category)


def _parse_fields(data: dict) -> FieldConfig:
    values = {}
    for f in dataclass_fields(FieldConfig):
        names = data.get(f.name)
        if names is None:
            raise ConfigError(f"Missing field list: {f.name!r}")
        if not isinstance(names, list) or not names:
            raise ConfigError(f"Field list {f.name!r} must be a non-empty list")
        for name in names:
            if not isinstance(name, str) or not name.strip():
                raise ConfigError(f"Field list {f.name!r} contains an invalid name: {name!r}")
        values[f.name] = list(names)
    return FieldConfig(**values)


def parse_config(data: dict) -> Config:
    """Build and validate a Config from already-decoded JSON."""
    if not isinstance(data, dict):
        raise ConfigError("Config root must be an object")

    aliases = data.get("category_aliases", {})
    if not isinstance(aliases, dict):
        raise ConfigError("category_aliases must be an object")
    for category_key, labels in aliases.items():
        if not isinstance(labels, list):
            raise ConfigError(f"Aliases for {category_key!r} must be a list")

    settings_data = data.get("settings", {})
    if not isinstance(settings_data, dict):
        raise ConfigError("settings must be an object")
    min_contains = settings_data.get("min_contains_length", 3)
    if not isinstance(min_contains, int) or isinstance(min_contains, bool) or min_contains < 1:
        raise ConfigError("settings.min_contains_length must be a positive integer")

    return Config(
        fields=_parse_fields(data.get("fields", {})),
        category_aliases={k: list(v) for k, v in aliases.items()},
        settings=MatchSettings(min_contains_length=min_contains),
    )


def load_config(config_path: str | Path) -> Config:
    """
    Load configuration from JSON file.

    Args:
        config_path: Path to reconcile_config.json

    Returns:
        Validated Config

    Raises:
        ConfigError: if any field list or alias is unusable
    """
    path = Path(config_path)
    with open(path, "r") as f:
        data = json.load(f)
    return parse_config(data)


@lru_cache
def default_config() -> Config:
    """Configuration shipped with the package."""
    return load_config(DEFAULT_CONFIG_PATH)


def normalize_category(raw_label, config: Config) -> Optional[IssueCategory]:
    """
    Map a raw transaction-type label (e.g. "Purchase") to its IssueCategory.

    Returns None for blank or unknown labels.
    """
    key = normalize(raw_label)
    if not key:
        return None
    return config._category_lookup.get(key)
