"""Section-header narrative format.

Narratives are stored as plain text made of ``HEADER:`` sections so that
analysts can read them as-is and downstream consumers can parse them back
into fields. `NarrativeDocument.render` and `NarrativeDocument.parse` are
inverses for every known section.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

RULE_BASED_FOOTER = "[Rule-based analysis - AI temporarily unavailable]"
# Older narratives used an em dash in the footer.
_FOOTER_RE = re.compile(r"\[Rule-based analysis[^\]]*\]")

# Alert sections
WHAT_HAPPENED = "WHAT HAPPENED"
WHY_RISKY = "WHY IT'S RISKY"
RECOMMENDED_ACTION = "RECOMMENDED ACTION"
RISK_SCORE = "RISK SCORE"
ADJUSTED_SEVERITY = "ADJUSTED SEVERITY"
ASSET_CRITICALITY = "ASSET CRITICALITY"
IMPACT_NOTE = "IMPACT NOTE"
CONFIDENCE_SCORE = "CONFIDENCE SCORE"
INTERPRETATION = "INTERPRETATION"
FALSE_POSITIVE_LIKELIHOOD = "FALSE POSITIVE LIKELIHOOD"
RATIONALE = "RATIONALE"
ANALYST_GUIDANCE = "ANALYST GUIDANCE"

# Incident sections
ATTACK_PATTERN = "ATTACK PATTERN"
OBSERVED_BEHAVIOR = "OBSERVED BEHAVIOR"
BUSINESS_IMPACT = "BUSINESS IMPACT"
PRIORITY_LEVEL = "PRIORITY LEVEL"
CONTAINMENT_STEPS = "CONTAINMENT STEPS"
ANALYST_RECOMMENDATION = "ANALYST RECOMMENDATION"
CORRELATION_EVIDENCE = "CORRELATION EVIDENCE"
INCIDENT_ORIGIN = "INCIDENT ORIGIN"
TRIGGER_RULE = "TRIGGER RULE"
CORRELATION_DRIVERS = "CORRELATION DRIVERS"
CORRELATION_SUMMARY = "CORRELATION SUMMARY"
MATCHED_ENTITIES = "MATCHED ENTITIES"
SUPPORTING_ALERTS = "SUPPORTING ALERTS"
CONFIDENCE_INTERPRETATION = "CONFIDENCE INTERPRETATION"
FALSE_POSITIVE_RATIONALE = "FALSE POSITIVE RATIONALE"

ALERT_PROSE_SECTIONS = (WHAT_HAPPENED, WHY_RISKY, RECOMMENDED_ACTION)
ALERT_SECTIONS = ALERT_PROSE_SECTIONS + (
    RISK_SCORE,
    ADJUSTED_SEVERITY,
    ASSET_CRITICALITY,
    IMPACT_NOTE,
    CONFIDENCE_SCORE,
    INTERPRETATION,
    FALSE_POSITIVE_LIKELIHOOD,
    RATIONALE,
    ANALYST_GUIDANCE,
)

INCIDENT_PROSE_SECTIONS = (
    ATTACK_PATTERN,
    OBSERVED_BEHAVIOR,
    BUSINESS_IMPACT,
    PRIORITY_LEVEL,
    CONTAINMENT_STEPS,
    ANALYST_RECOMMENDATION,
)
EVIDENCE_SECTIONS = (
    INCIDENT_ORIGIN,
    TRIGGER_RULE,
    CORRELATION_DRIVERS,
    CORRELATION_SUMMARY,
    MATCHED_ENTITIES,
    SUPPORTING_ALERTS,
    CONFIDENCE_SCORE,
    CONFIDENCE_INTERPRETATION,
    FALSE_POSITIVE_LIKELIHOOD,
    FALSE_POSITIVE_RATIONALE,
)
INCIDENT_SECTIONS = INCIDENT_PROSE_SECTIONS + EVIDENCE_SECTIONS

# Narratives carrying all of these are considered complete and are not regenerated.
ALERT_REQUIRED_SECTIONS = (WHAT_HAPPENED, WHY_RISKY, RECOMMENDED_ACTION, RISK_SCORE)
INCIDENT_REQUIRED_SECTIONS = (ATTACK_PATTERN, BUSINESS_IMPACT, TRIGGER_RULE)

KNOWN_SECTIONS = tuple(dict.fromkeys(ALERT_SECTIONS + INCIDENT_SECTIONS))

# Sections that render on the header line when their value fits on one line.
_INLINE_SECTIONS = frozenset(
    {
        RISK_SCORE,
        ADJUSTED_SEVERITY,
        ASSET_CRITICALITY,
        IMPACT_NOTE,
        CONFIDENCE_SCORE,
        INTERPRETATION,
        FALSE_POSITIVE_LIKELIHOOD,
        RATIONALE,
    }
    | set(EVIDENCE_SECTIONS)
)

# Longest first so "CONFIDENCE INTERPRETATION" wins over "INTERPRETATION".
_HEADER_ALTERNATION = "|".join(
    re.escape(name) for name in sorted(KNOWN_SECTIONS + (CORRELATION_EVIDENCE,), key=len, reverse=True)
)
# Tolerates markdown decoration around headers in model output.
_HEADER_RE = re.compile(
    rf"^[ \t#*_]*({_HEADER_ALTERNATION})[*_]*[ \t]*:[*_]*[ \t]*",
    re.IGNORECASE | re.MULTILINE,
)
_CANONICAL = {name.upper(): name for name in KNOWN_SECTIONS + (CORRELATION_EVIDENCE,)}
_EVIDENCE_ONLY = frozenset(EVIDENCE_SECTIONS) - frozenset(ALERT_SECTIONS)


class NarrativeDocument:
    """Ordered mapping of section header to section text."""

    def __init__(self, sections: Optional[dict[str, str]] = None, rule_based: bool = False):
        self.sections: dict[str, str] = dict(sections or {})
        self.rule_based = rule_based

    def __getitem__(self, name: str) -> str:
        return self.sections[name]

    def __contains__(self, name: object) -> bool:
        return name in self.sections

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NarrativeDocument):
            return NotImplemented
        return self.sections == other.sections and self.rule_based == other.rule_based

    def __repr__(self) -> str:
        return f"NarrativeDocument(sections={list(self.sections)}, rule_based={self.rule_based})"

    def get(self, name: str, default: str = "") -> str:
        return self.sections.get(name, default)

    def set_section(self, name: str, value: str) -> None:
        self.sections[name] = value.strip()

    def has_sections(self, names: Iterable[str]) -> bool:
        """Whether every named section is present with non-empty text."""
        return all(self.sections.get(name) for name in names)

    def render(self) -> str:
        """Serialize to the section-header text format."""
        blocks: list[str] = []
        evidence_started = False
        for name, value in self.sections.items():
            if name in _EVIDENCE_ONLY and not evidence_started:
                blocks.append(f"{CORRELATION_EVIDENCE}:")
                evidence_started = True
            if name in _INLINE_SECTIONS and "\n" not in value:
                blocks.append(f"{name}: {value}".rstrip())
            else:
                blocks.append(f"{name}:\n{value}".rstrip())

        lines: list[str] = []
        for block in blocks:
            # Multi-line blocks get breathing room; inline runs stay together.
            if lines and ("\n" in block or "\n" in lines[-1]):
                lines.append("")
            lines.append(block)

        text = "\n".join(lines)
        if self.rule_based:
            text += f"\n\n{RULE_BASED_FOOTER}"
        return text

    @classmethod
    def parse(cls, text: Optional[str]) -> "NarrativeDocument":
        """Parse section-header text back into a document.

        Unknown text before the first header is ignored. The rule-based
        footer is stripped and reported through ``rule_based``.
        """
        text = text or ""
        rule_based = bool(_FOOTER_RE.search(text))
        text = _FOOTER_RE.sub("", text)

        sections: dict[str, str] = {}
        matches = list(_HEADER_RE.finditer(text))
        for index, match in enumerate(matches):
            name = _CANONICAL[match.group(1).upper()]
            end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
            if name == CORRELATION_EVIDENCE:
                continue
            # First occurrence wins when a model repeats a header.
            sections.setdefault(name, text[match.end():end].strip())
        return cls(sections, rule_based=rule_based)


def is_rule_based(text: Optional[str]) -> bool:
    """Whether a stored narrative came from the deterministic fallback."""
    return bool(text) and bool(_FOOTER_RE.search(text or ""))
