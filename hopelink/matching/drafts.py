"""Admin edit session over a parameter snapshot.

A draft never mutates the snapshot it was opened on. Edits accumulate as a
mapping of dotted paths (``weights.geographic_proximity``) to new values,
so dirtiness and the pending diff are plain comparisons against the base.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from hopelink.matching.config import FactorWeights, MatchingParameters
from hopelink.matching.errors import ParameterValidationError

# Fields an admin may not touch through a draft
_READ_ONLY = {"context", "updated_at"}

# Column-style names sent by the admin settings page
_ALIASES = {
    "geographic_proximity_weight": "weights.geographic_proximity",
    "item_compatibility_weight": "weights.item_compatibility",
    "urgency_alignment_weight": "weights.urgency_alignment",
    "user_reliability_weight": "weights.user_reliability",
    "delivery_compatibility_weight": "weights.delivery_compatibility",
    "max_matching_distance_km": "max_distance_km",
}


def _flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in data.items():
        path = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, f"{path}."))
        else:
            flat[path] = value
    return flat


def _unflatten(flat: Mapping[str, Any]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for path, value in flat.items():
        node = nested
        *parents, leaf = path.split(".")
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return nested


@dataclass(frozen=True)
class ParameterDraft:
    """Immutable snapshot plus pending edits."""

    base: MatchingParameters
    pending: Mapping[str, Any] = field(default_factory=dict)

    def _editable_paths(self) -> set[str]:
        return {
            p for p in _flatten(self.base.model_dump()) if p.split(".")[0] not in _READ_ONLY
        }

    def edit(self, updates: Mapping[str, Any]) -> "ParameterDraft":
        """
        Return a new draft with ``updates`` layered on top.

        Args:
            updates: Nested (``{"weights": {...}}``) or dotted-path edits
                (flat names such as ``auto_claim_threshold`` are top-level paths)

        Raises:
            ParameterValidationError: If a key is not an editable parameter
        """
        flat = {_ALIASES.get(k, k): v for k, v in _flatten(updates).items()}
        allowed = self._editable_paths()
        unknown = sorted(set(flat) - allowed)
        if unknown:
            raise ParameterValidationError(
                f"Unknown matching parameter(s): {', '.join(unknown)}"
            )
        return ParameterDraft(self.base, {**self.pending, **flat})

    def current(self) -> dict[str, Any]:
        """Flat view of the base with pending edits applied."""
        return {**_flatten(self.base.model_dump()), **self.pending}

    def diff(self) -> dict[str, tuple[Any, Any]]:
        """Map each changed path to its ``(old, new)`` values."""
        original = _flatten(self.base.model_dump())
        return {
            path: (original[path], value)
            for path, value in sorted(self.pending.items())
            if original[path] != value
        }

    @property
    def is_dirty(self) -> bool:
        return bool(self.diff())

    def discard(self) -> "ParameterDraft":
        return ParameterDraft(self.base)

    def reset_weights(self) -> "ParameterDraft":
        """Queue the default weights as edits."""
        defaults = FactorWeights().as_dict()
        return self.edit({"weights": defaults})

    def build(self) -> MatchingParameters:
        """
        Materialise the draft as validated parameters.

        Returns:
            New immutable parameters

        Raises:
            ParameterValidationError: On out-of-range values, a bad weight sum
                or out-of-order thresholds
        """
        try:
            params = MatchingParameters.model_validate(_unflatten(self.current()))
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(p) for p in first["loc"])
            raise ParameterValidationError(f"{location}: {first['msg']}") from e

        params.validate_config()
        return params
