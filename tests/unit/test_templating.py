"""
Unit tests for automation message templating.
"""

import pytest

from claimdesk.templating import format_time_12h, render_template


@pytest.mark.unit
class TestFormatTime:
    """Test 24h to 12h conversion."""

    def test_afternoon(self):
        assert format_time_12h("14:05") == "2:05 PM"

    def test_midnight_and_noon(self):
        assert format_time_12h("00:30") == "12:30 AM"
        assert format_time_12h("12:00") == "12:00 PM"

    def test_seconds_are_dropped(self):
        assert format_time_12h("09:15:00") == "9:15 AM"

    def test_empty(self):
        assert format_time_12h("") == ""
        assert format_time_12h(None) == ""

    @pytest.mark.parametrize("raw", ["2pm", "noon", "25:00"])
    def test_unparseable_returned_unchanged(self, raw):
        assert format_time_12h(raw) == raw


@pytest.mark.unit
class TestRenderTemplate:
    """Test merge field replacement."""

    def setup_method(self):
        self.claim = {
            "claim_number": "FC-1001",
            "policyholder_name": "Dana Rivera",
            "claim_amount": 0,
        }

    def test_claim_and_trigger_fields(self):
        result = render_template(
            "Claim {claim.claim_number} moved to {trigger.new_status}",
            self.claim,
            {"new_status": "Inspection Scheduled"}
        )
        assert result == "Claim FC-1001 moved to Inspection Scheduled"

    def test_missing_and_falsy_values_render_empty(self):
        result = render_template(
            "[{claim.adjuster_name}][{claim.claim_amount}][{trigger.nothing}]",
            self.claim,
            {}
        )
        assert result == "[][][]"

    def test_inspection_fields_prefer_trigger_data(self):
        inspection = {
            "inspection_date": "2025-03-20",
            "inspection_time": "09:00",
            "inspection_type": "Roof",
            "inspector_name": "Pat",
            "notes": "Bring ladder",
        }
        result = render_template(
            "{inspection.date} at {inspection.time} ({inspection.type}) with {inspection.inspector}: {inspection.notes}",
            self.claim,
            {"inspection_time": "14:30", "inspector_name": "Jordan"},
            inspection
        )
        assert result == "2025-03-20 at 2:30 PM (Roof) with Jordan: Bring ladder"

    def test_unknown_inspection_field_left_alone(self):
        assert render_template("{inspection.color}", self.claim, {}) == "{inspection.color}"

    def test_empty_template(self):
        assert render_template(None, self.claim, {}) == ""
        assert render_template("", self.claim, {}) == ""
