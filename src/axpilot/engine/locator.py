"""Locator -- a serialisable query that identifies a UI node.

Criteria are ordered by specificity: ``dom_id`` > ``identifier`` > ``role`` >
``dom_class`` > ``name_contains``.  A locator built with a ``dom_id`` carries
nothing else; the identifier match is unambiguous and the search engine
resolves it on a separate, deeper path.
"""

from __future__ import annotations

import dataclasses
import enum
import json
from typing import Any

from axpilot.engine.protocols import UIElement


class MatchType(str, enum.Enum):
    EXACT = "exact"
    CONTAINS = "contains"


# Locator attribute name -> UIElement field
_ATTRIBUTE_FIELDS: dict[str, str] = {
    "AXDOMIdentifier": "dom_id",
    "AXIdentifier": "identifier",
    "AXRole": "role",
    "AXDOMClassList": "dom_classes",
    "AXTitle": "title",
    "AXDescription": "description",
    "AXValue": "value",
}

_SHORT_FORM: dict[str, tuple[str, MatchType]] = {
    "dom_id": ("AXDOMIdentifier", MatchType.EXACT),
    "identifier": ("AXIdentifier", MatchType.EXACT),
    "role": ("AXRole", MatchType.EXACT),
    "dom_class": ("AXDOMClassList", MatchType.CONTAINS),
}


@dataclasses.dataclass(frozen=True)
class Criterion:
    """One attribute predicate."""

    attribute: str
    value: str
    match_type: MatchType = MatchType.EXACT

    def matches(self, element: UIElement) -> bool:
        field_name = _ATTRIBUTE_FIELDS.get(self.attribute)
        if field_name is None:
            return False
        actual = getattr(element, field_name) or ""
        if self.match_type == MatchType.CONTAINS:
            return self.value.lower() in actual.lower()
        return actual == self.value

    def to_dict(self) -> dict[str, str]:
        return {
            "attribute": self.attribute,
            "value": self.value,
            "match_type": self.match_type.value,
        }


@dataclasses.dataclass(frozen=True)
class Locator:
    """Ordered attribute criteria plus an optional display-name predicate."""

    criteria: tuple[Criterion, ...] = ()
    name_contains: str | None = None

    @classmethod
    def build(
        cls,
        query: str | None = None,
        role: str | None = None,
        dom_id: str | None = None,
        dom_class: str | None = None,
        identifier: str | None = None,
    ) -> Locator:
        """Combine the given pieces in priority order.

        A ``dom_id`` short-circuits everything else.
        """
        if dom_id:
            return cls(criteria=(Criterion("AXDOMIdentifier", dom_id, MatchType.EXACT),))

        criteria: list[Criterion] = []
        if identifier:
            criteria.append(Criterion("AXIdentifier", identifier, MatchType.EXACT))
        if role:
            criteria.append(Criterion("AXRole", role, MatchType.EXACT))
        if dom_class:
            criteria.append(Criterion("AXDOMClassList", dom_class, MatchType.CONTAINS))
        return cls(criteria=tuple(criteria), name_contains=query or None)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Locator:
        """Parse either the short form or the ``criteria`` long form.

        Raises ``ValueError`` on a malformed mapping.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Locator must be a mapping, got {type(data).__name__}")

        if "criteria" in data:
            raw = data.get("criteria") or []
            if not isinstance(raw, list):
                raise ValueError("'criteria' must be a list")
            criteria: list[Criterion] = []
            for item in raw:
                if not isinstance(item, dict) or "attribute" not in item or "value" not in item:
                    raise ValueError(f"Invalid criterion: {item!r}")
                try:
                    match_type = MatchType(item.get("match_type", "exact"))
                except ValueError as exc:
                    raise ValueError(f"Unknown match_type: {item.get('match_type')!r}") from exc
                criteria.append(Criterion(str(item["attribute"]), str(item["value"]), match_type))

            dom_ids = [c for c in criteria if c.attribute == "AXDOMIdentifier"]
            if dom_ids:
                return cls(criteria=(dom_ids[0],))
            name = data.get("computed_name_contains") or data.get("name_contains")
            return cls(criteria=tuple(criteria), name_contains=str(name) if name else None)

        unknown = set(data) - set(_SHORT_FORM) - {"name_contains"}
        if unknown:
            raise ValueError(f"Unknown locator keys: {', '.join(sorted(unknown))}")
        return cls.build(
            query=_opt_str(data.get("name_contains")),
            role=_opt_str(data.get("role")),
            dom_id=_opt_str(data.get("dom_id")),
            dom_class=_opt_str(data.get("dom_class")),
            identifier=_opt_str(data.get("identifier")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Short form when every criterion maps onto a short key, else long form."""
        short: dict[str, Any] = {}
        for criterion in self.criteria:
            key = next(
                (k for k, (attr, mt) in _SHORT_FORM.items()
                 if attr == criterion.attribute and mt == criterion.match_type),
                None,
            )
            if key is None or key in short:
                long_form: dict[str, Any] = {"criteria": [c.to_dict() for c in self.criteria]}
                if self.name_contains:
                    long_form["computed_name_contains"] = self.name_contains
                return long_form
            short[key] = criterion.value
        if self.name_contains:
            short["name_contains"] = self.name_contains
        return short

    # -- Accessors -----------------------------------------------------------

    @property
    def dom_id(self) -> str | None:
        for criterion in self.criteria:
            if criterion.attribute == "AXDOMIdentifier":
                return criterion.value
        return None

    @property
    def role(self) -> str | None:
        for criterion in self.criteria:
            if criterion.attribute == "AXRole":
                return criterion.value
        return None

    @property
    def is_empty(self) -> bool:
        return not self.criteria and not self.name_contains

    def cache_key(self) -> str:
        """Stable string for use as a cache key."""
        return json.dumps(self.to_dict(), sort_keys=True)

    def describe(self) -> str:
        """Human-readable form for log lines and error messages."""
        parts = [f"{c.attribute}={c.value!r}" for c in self.criteria]
        if self.name_contains:
            parts.append(f"name~{self.name_contains!r}")
        return ", ".join(parts) or "<empty>"

    # -- Matching ------------------------------------------------------------

    def matches_criteria(self, element: UIElement) -> bool:
        return all(c.matches(element) for c in self.criteria)

    def matches(self, element: UIElement) -> bool:
        """All criteria hold and, if set, the name predicate holds."""
        if not self.matches_criteria(element):
            return False
        if self.name_contains:
            return text_matches(element, self.name_contains)
        return True


def text_matches(element: UIElement, query: str, exact: bool = False) -> bool:
    """Case-insensitive match of *query* against the node's observable text.

    Checks name, title, value, description and identifier.  Raw static-text
    content is not consulted beyond ``value``.
    """
    needle = query.lower()
    for text in (element.name, element.title, element.value, element.description, element.identifier):
        if not text:
            continue
        hay = text.lower()
        if (hay == needle) if exact else (needle in hay):
            return True
    return False


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
