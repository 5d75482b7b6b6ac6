# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Statement templates for COA FinSight.

A template describes the tree of sections of one statement (balance sheet
assets, balance sheet liabilities and equity, income statement) and which
account code range feeds each leaf section. Templates are written in TOML,
one table per statement, for example::

    [assets]
    title = "Activo"
    total_measure = "total_assets"

    [[assets.sections]]
    code = "B"
    name = "Activo corriente"
    measure = "current_assets"

    [[assets.sections.children]]
    code = "B.VII"
    name = "Tesoreria"
    range = ["57", "58"]
    measure = "cash"

Each section accepts:

- ``code`` / ``name``: identifier and label (codes are unique per template),
- ``range``: ``[start, end)`` code range, leaves only,
- ``sign``: ``1`` (default) or ``-1``, multiplies the leaf sum (used so that
  expenses reduce an income statement total),
- ``measure``: optional canonical measure name fed to the ratio engine,
- ``source``: ``"accounts"`` (default) or ``"period_result"`` for the leaf
  that carries the result of the period into equity,
- ``children``: nested sections.

Leaf ranges of one template must not overlap. This module exposes:

- SectionDef:        one template node,
- StatementTemplate: a validated template with lookup helpers,
- load_statement_templates(path): all templates of a TOML file.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .accounts import matches, validate_range
from .exceptions import TemplateError

SOURCES = ("accounts", "period_result")


@dataclass(frozen=True)
class SectionDef:
    """Definition of a single statement section.

    Attributes:
        code: Unique identifier of the section within its template.
        name: Human-readable label.
        range_start: Inclusive lower code boundary (leaves only).
        range_end: Exclusive upper code boundary (leaves only).
        children: Nested section definitions, in display order.
        sign: 1 or -1, applied to the sum of a leaf's accounts.
        measure: Canonical measure name, or '' when none.
        source: 'accounts' or 'period_result'.
    """

    code: str
    name: str
    range_start: Optional[str] = None
    range_end: Optional[str] = None
    children: tuple["SectionDef", ...] = ()
    sign: int = 1
    measure: str = ""
    source: str = "accounts"

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def matches(self, code: str) -> bool:
        """Return True if the account code feeds this (leaf) section."""
        if self.range_start is None or self.range_end is None:
            return False
        return matches(code, self.range_start, self.range_end)

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


def section_from_mapping(raw: Mapping[str, Any]) -> SectionDef:
    """Build a SectionDef (recursively) from a parsed TOML table."""
    try:
        code = str(raw["code"]).strip()
        name = str(raw["name"]).strip()
    except KeyError as exc:
        raise TemplateError(f"Section is missing required key {exc}: {dict(raw)!r}") from exc

    range_start: Optional[str] = None
    range_end: Optional[str] = None
    raw_range = raw.get("range")
    if raw_range is not None:
        if not isinstance(raw_range, Sequence) or isinstance(raw_range, str) or len(raw_range) != 2:
            raise TemplateError(f"Section '{code}': range must be [start, end]")
        range_start, range_end = str(raw_range[0]).strip(), str(raw_range[1]).strip()

    children_raw = raw.get("children") or []
    children = tuple(section_from_mapping(c) for c in children_raw)

    try:
        sign = int(raw.get("sign", 1))
    except (TypeError, ValueError) as exc:
        raise TemplateError(f"Section '{code}': invalid sign {raw.get('sign')!r}") from exc

    return SectionDef(
        code=code,
        name=name,
        range_start=range_start,
        range_end=range_end,
        children=children,
        sign=sign,
        measure=str(raw.get("measure") or "").strip(),
        source=str(raw.get("source") or "accounts").strip(),
    )


def _padded(boundary: str, width: int) -> str:
    return boundary.ljust(width, "0")


class StatementTemplate:
    """In-memory representation of a statement template.

    The constructor validates the tree:
      - section codes are unique,
      - leaves have either a code range or the 'period_result' source,
      - internal sections carry no range,
      - ranges are well formed and leaf ranges never overlap,
      - canonical measure names are unique.
    """

    def __init__(
        self,
        key: str,
        title: str,
        sections: Sequence[SectionDef],
        total_measure: str = "",
    ):
        self.key = key
        self.title = title
        self.sections: tuple[SectionDef, ...] = tuple(sections)
        self.total_measure = total_measure
        self._validate()
        # Leaves in definition order, used for account classification.
        self._leaves: tuple[SectionDef, ...] = tuple(
            s for s in self.walk() if s.is_leaf and s.source == "accounts"
        )

    @staticmethod
    def from_mapping(key: str, data: Mapping[str, Any]) -> "StatementTemplate":
        """Build a template from one parsed TOML table."""
        sections_raw = data.get("sections") or []
        if not isinstance(sections_raw, Sequence) or not sections_raw:
            raise TemplateError(f"Template '{key}' defines no sections.")
        return StatementTemplate(
            key=key,
            title=str(data.get("title") or key),
            sections=[section_from_mapping(s) for s in sections_raw],
            total_measure=str(data.get("total_measure") or "").strip(),
        )

    def walk(self):
        for section in self.sections:
            yield from section.walk()

    def leaves(self) -> tuple[SectionDef, ...]:
        """Return the account-fed leaves, in definition order."""
        return self._leaves

    def match_leaf_for_code(self, code: str) -> Optional[SectionDef]:
        """Return the leaf fed by the given account code, if any.

        Leaf ranges do not overlap, so at most one leaf matches.
        """
        for leaf in self._leaves:
            if leaf.matches(code):
                return leaf
        return None

    def canonical_sections(self) -> dict[str, SectionDef]:
        """Return a mapping from canonical measure name to SectionDef."""
        return {s.measure: s for s in self.walk() if s.measure}

    def _validate(self) -> None:
        seen_codes: set[str] = set()
        seen_measures: set[str] = set()
        ranges: list[tuple[str, str, str]] = []

        for s in self.walk():
            if s.code in seen_codes:
                raise TemplateError(f"Template '{self.key}': duplicate section code '{s.code}'")
            seen_codes.add(s.code)

            if s.measure:
                if s.measure in seen_measures or s.measure == self.total_measure:
                    raise TemplateError(
                        f"Template '{self.key}': duplicate measure '{s.measure}'"
                    )
                seen_measures.add(s.measure)

            if s.sign not in (1, -1):
                raise TemplateError(f"Section '{s.code}': sign must be 1 or -1")
            if s.source not in SOURCES:
                raise TemplateError(f"Section '{s.code}': unknown source '{s.source}'")

            has_range = s.range_start is not None
            if not s.is_leaf:
                if has_range or s.source != "accounts":
                    raise TemplateError(
                        f"Section '{s.code}': only leaf sections may define a "
                        "range or a source"
                    )
                continue

            if s.source == "period_result":
                if has_range:
                    raise TemplateError(
                        f"Section '{s.code}': a period_result section has no range"
                    )
                continue

            if not has_range:
                raise TemplateError(f"Leaf section '{s.code}' defines no range")
            try:
                validate_range(s.range_start, s.range_end)
            except ValueError as exc:
                raise TemplateError(f"Section '{s.code}': {exc}") from exc
            ranges.append((s.range_start, s.range_end, s.code))

        # Overlap check on boundaries padded to a common width, so that
        # ['631', '640') and ['64', '65') are seen as adjacent.
        if ranges:
            width = max(max(len(r[0]), len(r[1])) for r in ranges)
            ordered = sorted(ranges, key=lambda r: _padded(r[0], width))
            for prev, nxt in zip(ordered, ordered[1:]):
                if _padded(prev[1], width) > _padded(nxt[0], width):
                    raise TemplateError(
                        f"Template '{self.key}': ranges of sections '{prev[2]}' "
                        f"[{prev[0]}, {prev[1]}) and '{nxt[2]}' [{nxt[0]}, {nxt[1]}) overlap"
                    )


def load_statement_templates(path: Path) -> dict[str, StatementTemplate]:
    """Load every statement template defined in a TOML file.

    Each top-level table with a ``sections`` array is a template; the table
    name becomes the template key.

    Args:
        path: Path to the statements TOML file.

    Returns:
        A dictionary {template key -> StatementTemplate}, in file order.
    """
    # config imports this module at load time.
    from .config import load_toml

    data = load_toml(path)
    templates: dict[str, StatementTemplate] = {}
    for key, table in data.items():
        if isinstance(table, Mapping) and "sections" in table:
            templates[str(key)] = StatementTemplate.from_mapping(str(key), table)
    if not templates:
        raise TemplateError(f"No statement template found in {path}")
    return templates
