"""
Carrier rule model.

Each carrier row in the database carries two JSON blobs:

    validation_rules:  {"pattern": "ends_with_001", "min_length": 20, "digits_only": true}
    extraction_config: {"method": "slice", "start": -14, "end": -3}

They are parsed here, once, into small typed rule objects. A row with a rule
that cannot be understood raises CarrierConfigError at load time, so a typo
in the database shows up in the log the moment carriers are loaded instead of
as "code not recognized" on every scan.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from exceptions import CarrierConfigError
from logger import get_logger

logger = get_logger(__name__)

PATTERN_PREFIX = "starts_with_"
PATTERN_SUFFIX = "ends_with_"


# ---------------------------------------------------------------------------
# Validation rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PatternRule:
    """Literal anchoring check: kind is "prefix" or "suffix"."""
    kind: str
    literal: str

    def check(self, code: str) -> bool:
        if self.kind == "prefix":
            return code.startswith(self.literal)
        return code.endswith(self.literal)

    def describe(self) -> str:
        return f"{'starts' if self.kind == 'prefix' else 'ends'} with {self.literal!r}"


@dataclass(frozen=True)
class LengthRule:
    """
    Length constraints. min/max are inclusive; ``lengths`` is the set of exact
    accepted lengths. None means the side is not enforced.
    """
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    lengths: Optional[FrozenSet[int]] = None

    def check(self, code: str) -> bool:
        n = len(code)
        if self.min_length is not None and n < self.min_length:
            return False
        if self.max_length is not None and n > self.max_length:
            return False
        if self.lengths is not None and n not in self.lengths:
            return False
        return True

    def describe(self) -> str:
        parts = []
        if self.min_length is not None:
            parts.append(f"len >= {self.min_length}")
        if self.max_length is not None:
            parts.append(f"len <= {self.max_length}")
        if self.lengths is not None:
            parts.append(f"len in {sorted(self.lengths)}")
        return ", ".join(parts)


_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class DigitsOnlyRule:
    def check(self, code: str) -> bool:
        return _DIGITS.fullmatch(code) is not None

    def describe(self) -> str:
        return "digits only"


ValidationRule = Union[PatternRule, LengthRule, DigitsOnlyRule]


# ---------------------------------------------------------------------------
# Extraction methods
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SliceExtraction:
    """code[start:end]; negative offsets count from the end."""
    start: Optional[int] = None
    end: Optional[int] = None

    def apply(self, raw: str) -> str:
        return raw[self.start:self.end]


@dataclass(frozen=True)
class SubstringExtraction:
    """Truncate to the first ``length`` characters when the code is longer."""
    length: int

    def apply(self, raw: str) -> str:
        if len(raw) > self.length:
            return raw[:self.length]
        return raw


@dataclass(frozen=True)
class RegexExtraction:
    """First capture group, else whole match, else the input unchanged."""
    pattern: "re.Pattern"

    def apply(self, raw: str) -> str:
        match = self.pattern.search(raw)
        if not match:
            return raw
        if match.groups() and match.group(1):
            return match.group(1)
        return match.group(0)


Extraction = Union[SliceExtraction, SubstringExtraction, RegexExtraction]


# ---------------------------------------------------------------------------
# Carrier
# ---------------------------------------------------------------------------

@dataclass
class Carrier:
    """
    A shipping company and the rules its label codes follow.

    Attributes:
        id: Primary key of the carrier row (used as carrier_id on scans)
        code: Short machine name, e.g. "coordinadora"
        display_name: Name shown to operators, e.g. "Coordinadora"
        is_active: Inactive carriers are skipped during matching
        rules: Parsed validation rules, all of which must pass
        extraction: Parsed extraction method, or None to keep the code as-is
        priority: Optional explicit match priority (lower wins)
    """
    id: Any
    code: str
    display_name: str
    is_active: bool = True
    rules: Tuple[ValidationRule, ...] = ()
    extraction: Optional[Extraction] = None
    priority: Optional[int] = None
    raw_rules: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def prefixes(self) -> List[str]:
        """Literal prefixes from this carrier's starts_with rules."""
        return [r.literal for r in self.rules if isinstance(r, PatternRule) and r.kind == "prefix"]


def _parse_int(value, carrier_id, key: str, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise CarrierConfigError(f"expected an integer, got {value!r}", carrier_id=carrier_id, field=key)
    if value < minimum:
        raise CarrierConfigError(f"must be >= {minimum}, got {value}", carrier_id=carrier_id, field=key)
    return value


def _parse_optional_offset(value, carrier_id, key: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise CarrierConfigError(f"expected an integer offset, got {value!r}", carrier_id=carrier_id, field=key)
    return value


def parse_validation_rules(rules: Optional[Dict[str, Any]], carrier_id=None) -> Tuple[ValidationRule, ...]:
    """
    Parse a validation_rules blob into rule objects.

    Supported keys: pattern, min_length, max_length, length, digits_only.
    A falsy/absent key is not enforced. Unknown keys are ignored with a
    debug log so that new columns do not break older stations.

    Raises:
        CarrierConfigError: If a known key has an unusable value
    """
    if rules is None:
        return ()
    if not isinstance(rules, dict):
        raise CarrierConfigError(f"validation_rules must be an object, got {type(rules).__name__}",
                                 carrier_id=carrier_id, field="validation_rules")

    parsed: List[ValidationRule] = []

    pattern = rules.get("pattern")
    if pattern:
        if not isinstance(pattern, str):
            raise CarrierConfigError(f"expected a string, got {pattern!r}", carrier_id=carrier_id, field="pattern")
        if pattern.startswith(PATTERN_PREFIX) and len(pattern) > len(PATTERN_PREFIX):
            parsed.append(PatternRule("prefix", pattern[len(PATTERN_PREFIX):]))
        elif pattern.startswith(PATTERN_SUFFIX) and len(pattern) > len(PATTERN_SUFFIX):
            parsed.append(PatternRule("suffix", pattern[len(PATTERN_SUFFIX):]))
        else:
            raise CarrierConfigError(f"unknown pattern {pattern!r}", carrier_id=carrier_id, field="pattern")

    min_length = rules.get("min_length")
    max_length = rules.get("max_length")
    length = rules.get("length")

    lengths = None
    if length:
        values = length if isinstance(length, (list, tuple)) else [length]
        lengths = frozenset(_parse_int(v, carrier_id, "length", minimum=1) for v in values)

    if min_length or max_length or lengths:
        rule = LengthRule(
            min_length=_parse_int(min_length, carrier_id, "min_length") if min_length else None,
            max_length=_parse_int(max_length, carrier_id, "max_length") if max_length else None,
            lengths=lengths,
        )
        if rule.min_length is not None and rule.max_length is not None and rule.min_length > rule.max_length:
            raise CarrierConfigError(f"min_length {rule.min_length} > max_length {rule.max_length}",
                                     carrier_id=carrier_id, field="min_length")
        parsed.append(rule)

    if rules.get("digits_only"):
        parsed.append(DigitsOnlyRule())

    unknown = set(rules) - {"pattern", "min_length", "max_length", "length", "digits_only"}
    if unknown:
        logger.debug(f"Carrier {carrier_id}: ignoring unknown rule keys {sorted(unknown)}")

    return tuple(parsed)


def parse_extraction_config(config: Optional[Dict[str, Any]], carrier_id=None) -> Optional[Extraction]:
    """
    Parse an extraction_config blob.

    Methods:
        slice:     {"method": "slice", "start": -14, "end": -3}
        substring: {"method": "substring", "length": 12}
        regex:     {"method": "regex", "pattern": "GUIA:\\s*(\\d+)"}

    An absent config or an unknown method means "keep the code unchanged";
    unknown methods are logged as warnings.

    Raises:
        CarrierConfigError: If a known method has missing or invalid parameters
    """
    if not config:
        return None
    if not isinstance(config, dict):
        raise CarrierConfigError(f"extraction_config must be an object, got {type(config).__name__}",
                                 carrier_id=carrier_id, field="extraction_config")

    method = config.get("method")

    if method == "slice":
        return SliceExtraction(
            start=_parse_optional_offset(config.get("start"), carrier_id, "start"),
            end=_parse_optional_offset(config.get("end"), carrier_id, "end"),
        )

    if method == "substring":
        length = config.get("length")
        if length is None:
            # Without a target length the method is a no-op
            return None
        return SubstringExtraction(length=_parse_int(length, carrier_id, "length", minimum=1))

    if method == "regex":
        pattern = config.get("pattern")
        if not pattern:
            return None
        try:
            return RegexExtraction(pattern=re.compile(pattern))
        except re.error as e:
            raise CarrierConfigError(f"invalid regex {pattern!r}: {e}", carrier_id=carrier_id, field="pattern") from e

    if method:
        logger.warning(f"Carrier {carrier_id}: unknown extraction method {method!r}, codes kept unchanged")
    return None


def carrier_from_row(row: Dict[str, Any]) -> Carrier:
    """
    Build a Carrier from a carriers table row.

    Expected row keys: id, code, display_name, is_active, validation_rules,
    extraction_config and optionally priority.

    Raises:
        CarrierConfigError: If the row is missing its id or has invalid rules
    """
    carrier_id = row.get("id")
    if carrier_id is None:
        raise CarrierConfigError("carrier row has no id", field="id")

    priority = row.get("priority")
    if priority is not None:
        priority = _parse_int(priority, carrier_id, "priority", minimum=-(2 ** 31))

    raw_rules = row.get("validation_rules") or {}

    return Carrier(
        id=carrier_id,
        code=row.get("code") or str(carrier_id),
        display_name=row.get("display_name") or row.get("name") or row.get("code") or str(carrier_id),
        is_active=bool(row.get("is_active", True)),
        rules=parse_validation_rules(raw_rules, carrier_id),
        extraction=parse_extraction_config(row.get("extraction_config"), carrier_id),
        priority=priority,
        raw_rules=raw_rules if isinstance(raw_rules, dict) else {},
    )


def load_carriers(rows: List[Dict[str, Any]]) -> List[Carrier]:
    """
    Parse carrier rows, skipping (and logging) the malformed ones.

    The result preserves the input order, stably re-sorted by ``priority``
    when at least one carrier defines it (carriers without a priority go last).

    Args:
        rows: Rows as returned by the store's carrier query

    Returns:
        Parsed carriers in match order
    """
    carriers: List[Carrier] = []

    for row in rows:
        try:
            carriers.append(carrier_from_row(row))
        except CarrierConfigError as e:
            logger.error(f"Rejected carrier configuration: {e.get_display_message()}")

    if any(c.priority is not None for c in carriers):
        carriers.sort(key=lambda c: (c.priority is None, c.priority if c.priority is not None else 0))

    logger.info(f"Loaded {len(carriers)} carriers ({sum(c.is_active for c in carriers)} active)")
    return carriers
