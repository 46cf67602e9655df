"""
Tests for carrier row parsing.
"""

import pytest

from carrier_rules import (
    DigitsOnlyRule, LengthRule, PatternRule, RegexExtraction, SliceExtraction, SubstringExtraction,
    carrier_from_row, load_carriers, parse_extraction_config, parse_validation_rules,
)
from exceptions import CarrierConfigError
from conftest import make_carrier_row


# ============================================================================
# Validation rules
# ============================================================================

class TestParseValidationRules:

    def test_full_rule_set(self):
        rules = parse_validation_rules({"pattern": "ends_with_001", "min_length": 20, "digits_only": True})

        assert PatternRule("suffix", "001") in rules
        assert LengthRule(min_length=20) in rules
        assert DigitsOnlyRule() in rules

    def test_prefix_pattern(self):
        assert parse_validation_rules({"pattern": "starts_with_24"}) == (PatternRule("prefix", "24"),)

    def test_single_length_becomes_set(self):
        (rule,) = parse_validation_rules({"length": 11})
        assert rule.lengths == frozenset({11})

    def test_length_list(self):
        (rule,) = parse_validation_rules({"length": [12, 13]})
        assert rule.check("1" * 12)
        assert rule.check("1" * 13)
        assert not rule.check("1" * 14)

    def test_absent_and_falsy_keys_not_enforced(self):
        assert parse_validation_rules({}) == ()
        assert parse_validation_rules(None) == ()
        assert parse_validation_rules({"digits_only": False, "min_length": None}) == ()

    def test_unknown_pattern_rejected(self):
        with pytest.raises(CarrierConfigError) as exc_info:
            parse_validation_rules({"pattern": "ends_at_001"}, carrier_id="coord")

        assert exc_info.value.field == "pattern"
        assert exc_info.value.carrier_id == "coord"

    def test_non_integer_length_rejected(self):
        with pytest.raises(CarrierConfigError):
            parse_validation_rules({"min_length": "20"})

    def test_min_greater_than_max_rejected(self):
        with pytest.raises(CarrierConfigError, match="min_length"):
            parse_validation_rules({"min_length": 20, "max_length": 10})

    def test_non_dict_rejected(self):
        with pytest.raises(CarrierConfigError):
            parse_validation_rules(["pattern"])

    def test_unknown_keys_ignored(self):
        assert parse_validation_rules({"checksum": "mod10", "digits_only": True}) == (DigitsOnlyRule(),)


# ============================================================================
# Extraction config
# ============================================================================

class TestParseExtractionConfig:

    def test_slice(self):
        assert parse_extraction_config({"method": "slice", "start": -14, "end": -3}) == SliceExtraction(-14, -3)

    def test_substring(self):
        assert parse_extraction_config({"method": "substring", "length": 12}) == SubstringExtraction(12)

    def test_regex(self):
        extraction = parse_extraction_config({"method": "regex", "pattern": r"GUIA:(\d+)"})
        assert isinstance(extraction, RegexExtraction)
        assert extraction.apply("GUIA:123") == "123"

    def test_absent_or_unknown_method_keeps_code(self):
        assert parse_extraction_config(None) is None
        assert parse_extraction_config({}) is None
        assert parse_extraction_config({"method": "reverse"}) is None

    def test_broken_regex_rejected(self):
        with pytest.raises(CarrierConfigError, match="invalid regex"):
            parse_extraction_config({"method": "regex", "pattern": "(unclosed"}, carrier_id="x")

    def test_substring_zero_length_rejected(self):
        with pytest.raises(CarrierConfigError):
            parse_extraction_config({"method": "substring", "length": 0})

    def test_slice_offset_must_be_int(self):
        with pytest.raises(CarrierConfigError):
            parse_extraction_config({"method": "slice", "start": "a"})


# ============================================================================
# Rows and loading
# ============================================================================

class TestCarrierFromRow:

    def test_row_fields(self):
        carrier = carrier_from_row(make_carrier_row(
            7, "Servientrega", rules={"pattern": "starts_with_9"}, priority=2,
        ))

        assert carrier.id == 7
        assert carrier.display_name == "Servientrega"
        assert carrier.is_active
        assert carrier.priority == 2
        assert carrier.prefixes == ["9"]

    def test_missing_id_rejected(self):
        with pytest.raises(CarrierConfigError):
            carrier_from_row({"display_name": "Nameless"})


class TestLoadCarriers:

    def test_malformed_carrier_skipped(self):
        rows = [
            make_carrier_row("good", rules={"length": 11}),
            make_carrier_row("bad", rules={"pattern": "contains_7"}),
            make_carrier_row("also_good", rules={"digits_only": True}),
        ]

        carriers = load_carriers(rows)

        assert [c.id for c in carriers] == ["good", "also_good"]

    def test_store_order_kept_without_priorities(self):
        rows = [make_carrier_row(name) for name in ("b", "a", "c")]
        assert [c.id for c in load_carriers(rows)] == ["b", "a", "c"]

    def test_priority_sort_is_stable(self):
        rows = [
            make_carrier_row("no_priority"),
            make_carrier_row("second", priority=2),
            make_carrier_row("first_a", priority=1),
            make_carrier_row("first_b", priority=1),
        ]

        carriers = load_carriers(rows)

        assert [c.id for c in carriers] == ["first_a", "first_b", "second", "no_priority"]
