"""Item category vocabulary: relations, perishability and profile preferences."""

from __future__ import annotations

import re

RELATED_CATEGORIES: dict[str, tuple[str, ...]] = {
    "food": ("groceries", "meals"),
    "clothing": ("accessories", "shoes"),
    "electronics": ("appliances", "gadgets"),
    "furniture": ("home_goods", "decor"),
}

PERISHABLE_CATEGORIES = frozenset({"food", "groceries", "meals"})

# Donor ``donation_types`` / recipient ``assistance_needs`` labels
PREFERENCE_CATEGORIES: dict[str, tuple[str, ...]] = {
    "food & beverages": ("food", "groceries", "meals"),
    "clothing & accessories": ("clothing", "apparel", "accessories", "shoes"),
    "medical supplies": ("medical", "medicine"),
    "educational materials": ("educational", "books", "education"),
    "household items": ("household", "home"),
    "electronics & technology": ("electronics", "technology", "tech", "gadgets"),
    "toys & recreation": ("toys", "recreation"),
    "personal care items": ("personal care", "care"),
    "emergency supplies": ("emergency",),
    "financial assistance": ("financial",),
    "transportation": ("transportation",),
    "other": (),
}

# Item category -> volunteer ``preferred_delivery_types`` labels
DELIVERY_TYPES_FOR_CATEGORY: dict[str, tuple[str, ...]] = {
    "food": ("Food Items",),
    "groceries": ("Food Items", "Household Items"),
    "meals": ("Food Items",),
    "clothing": ("Clothing",),
    "electronics": ("Electronics",),
    "furniture": ("Furniture", "Household Items"),
    "medical": ("Medical Supplies",),
    "books": ("Books/Educational",),
    "educational": ("Books/Educational",),
    "toys": ("Toys",),
    "household": ("Household Items",),
}

CATCH_ALL_DELIVERY_TYPE = "household items"


def normalize_label(value: str | None) -> str:
    """Lowercase, trim and collapse separators so labels compare cleanly."""
    if not value:
        return ""
    return re.sub(r"\s+", " ", re.sub(r"[/\-]", " ", value.lower())).strip()


def normalize_category(value: str | None) -> str:
    if not value:
        return ""
    return re.sub(r"[\s\-]+", "_", value.strip().lower())


def category_score(offered: str | None, needed: str | None) -> float:
    """
    Score how well an offered category serves a needed one.

    Returns:
        1.0 for the same category, 0.6 for related ones, otherwise 0.0
    """
    a, b = normalize_category(offered), normalize_category(needed)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if b in RELATED_CATEGORIES.get(a, ()) or a in RELATED_CATEGORIES.get(b, ()):
        return 0.6
    return 0.0


def is_perishable(category: str | None, flag: bool | None = None) -> bool:
    """An explicit flag wins; otherwise perishability follows the category."""
    if flag is not None:
        return flag
    return normalize_category(category) in PERISHABLE_CATEGORIES


def preference_covers(preferences: list[str] | None, category: str | None) -> bool:
    """
    Check whether any profile preference label covers a category.

    A label covers a category when its mapped categories appear in it, or
    when either string contains the other.
    """
    cat = normalize_label(category).replace("_", " ")
    if not preferences or not cat:
        return False

    for label in preferences:
        pref = normalize_label(label)
        if not pref:
            continue
        mapped = PREFERENCE_CATEGORIES.get(pref, ())
        if any(m in cat for m in mapped) or cat in pref or pref in cat:
            return True
    return False
