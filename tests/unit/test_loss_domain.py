"""
Unit tests for loss domain classification.
"""

import pytest

from claimdesk.loss_domain import classify_loss_domain


def claim(loss_type, description=""):
    return {"loss_type": loss_type, "loss_description": description}


@pytest.mark.unit
class TestPriorityOrder:

    def test_fire_wins_over_water(self):
        result = classify_loss_domain(claim("Fire", "Water from firefighting soaked the kitchen"))
        assert result.domain == "fire_smoke"
        assert result.confidence == "confirmed"
        assert result.roof_involvement == "none"

    def test_fire_with_roof_mentioned(self):
        result = classify_loss_domain(claim("Fire", "Flames spread through the roof"))
        assert result.roof_involvement == "possible"

    def test_theft(self):
        result = classify_loss_domain(claim("Burglary", "Front door forced open"))
        assert result.domain == "theft_vandalism"
        assert result.roof_involvement == "none"

    def test_vehicle(self):
        result = classify_loss_domain(claim("Collision", "Truck hit the garage"))
        assert result.domain == "vehicle_impact"

    def test_hail_is_roof_confirmed(self):
        result = classify_loss_domain(claim("Hail", "Hail storm damaged roof shingles"))
        assert result.domain == "hail"
        assert result.roof_involvement == "confirmed"

    def test_explicit_roof_claim(self):
        result = classify_loss_domain(claim("Other", "Shingles missing along the ridge"))
        assert result.domain == "roof_exterior"
        assert result.roof_involvement == "confirmed"


@pytest.mark.unit
class TestWater:

    def test_no_roof_involvement(self):
        result = classify_loss_domain(claim("Water", "Pipe under the sink"))
        assert result.domain == "interior_water"
        assert result.confidence == "confirmed"
        assert result.roof_involvement == "none"

    def test_roof_source_without_evidence_is_probable(self):
        result = classify_loss_domain(claim("Water", "Roof leak stained the bedroom"))
        assert result.confidence == "probable"
        assert result.roof_involvement == "possible"
        assert len(result.unanswered_questions) == 3

    def test_roof_source_with_roof_photo_is_confirmed(self):
        photos = [{"category": "Roof", "file_name": "IMG_1.jpg"}]
        result = classify_loss_domain(claim("Water", "Roof leak stained the bedroom"), photos=photos)
        assert result.confidence == "confirmed"
        assert result.roof_involvement == "confirmed"

    def test_roof_file_counts_as_evidence(self):
        files = [{"file_name": "roof_report.pdf"}]
        result = classify_loss_domain(claim("Water", "Stain on bedroom wall"), files=files)
        assert result.roof_involvement == "possible"


@pytest.mark.unit
class TestWind:

    def test_interior_only_evidence(self):
        photos = [{"category": "Interior", "file_name": "living.jpg"}]
        result = classify_loss_domain(claim("Wind", "Storm damage"), photos=photos)
        assert result.domain == "wind_only"
        assert result.confidence == "probable"
        assert result.roof_involvement == "possible"

    def test_roof_photos_confirm(self):
        photos = [{"category": "exterior", "file_name": "shingle_closeup.jpg"}]
        result = classify_loss_domain(claim("Wind", "Storm damage"), photos=photos)
        assert result.confidence == "confirmed"
        assert result.roof_involvement == "confirmed"
        assert result.unanswered_questions == []

    def test_no_roof_evidence_asks_for_inspection(self):
        result = classify_loss_domain(claim("Hurricane", "Siding torn off"))
        assert result.roof_involvement == "possible"
        assert result.unanswered_questions == [
            "Has a roof inspection been performed to confirm wind damage to roof system?"
        ]


@pytest.mark.unit
class TestFallbacks:

    def test_mixed_evidence(self):
        photos = [
            {"category": "Interior", "file_name": "hall.jpg"},
            {"category": "Roof", "file_name": "top.jpg"},
        ]
        result = classify_loss_domain(claim("Other", "Damage found"), photos=photos)
        assert result.domain == "mixed"
        assert result.confidence == "probable"

    def test_unknown(self):
        result = classify_loss_domain(claim(None, None))
        assert result.domain == "unknown"
        assert result.confidence == "conditional"
        assert 'Loss type "not specified"' in result.reasoning
        assert len(result.unanswered_questions) == 2
