"""
Tests for measurement aggregation and primary image selection.
"""

import pytest

from gem_analysis.extraction import (
    ImageCandidate,
    MeasurementAggregator,
    PrimaryImageSelector,
    best_observation,
    candidates_from_response,
    match_term,
    normalize_sub_scores,
)
from gem_analysis.models import ExtractionMethod, MeasurementObservation
from gem_analysis.normalization import ImageEntry, NormalizedResponse, ShapeKind


def obs(attribute, value, confidence, method=ExtractionMethod.DIRECT_FIELD, image_index=1):
    return MeasurementObservation(
        attribute=attribute,
        value=value,
        confidence=confidence,
        method=method,
        image_index=image_index,
    )


class TestMeasurementAggregator:
    """Test suite for MeasurementAggregator."""

    def test_highest_confidence_wins(self):
        fields = MeasurementAggregator().reduce([
            obs("weight", 1.40, 0.4, image_index=1),
            obs("weight", 1.52, 0.95, image_index=2),
            obs("weight", 1.50, 0.7, image_index=3),
        ])
        assert fields["weight"].value == 1.52
        assert fields["weight"].confidence == 0.95
        assert not fields["weight"].via_fallback

    def test_tie_prefers_instrument_reading(self):
        winner = best_observation([
            obs("weight", 1.50, 0.9, ExtractionMethod.DIRECT_FIELD, image_index=1),
            obs("weight", 1.49, 0.9, ExtractionMethod.INSTRUMENT_READING, image_index=3),
        ])
        assert winner.value == 1.49

    def test_tie_on_method_prefers_earliest_image(self):
        winner = best_observation([
            obs("length", 7.1, 0.8, image_index=3),
            obs("length", 7.2, 0.8, image_index=1),
        ])
        assert winner.value == 7.2

    def test_provenance_includes_agreeing_observations(self):
        fields = MeasurementAggregator().reduce([
            obs("color", "Blue", 0.9, image_index=1),
            obs("color", "blue", 0.6, image_index=2),
            obs("color", "green", 0.5, image_index=3),
        ])
        assert [o.image_index for o in fields["color"].provenance] == [1, 2]

    def test_attributes_without_observations_absent(self):
        fields = MeasurementAggregator().reduce([obs("weight", 1.0, 0.8)])
        assert set(fields) == {"weight"}

    def test_free_text_fallback_discounted(self):
        response = NormalizedResponse(
            kind=ShapeKind.PER_IMAGE,
            images=[
                ImageEntry(image_index=1, texts=["Label reads 1.2 ct"]),
                ImageEntry(image_index=2, texts=["Vivid green stone, emerald cut, eye clean"]),
            ],
        )
        fields, observations = MeasurementAggregator().aggregate(response)

        assert fields["color"].value == "green"
        assert fields["color"].confidence == pytest.approx(0.3)
        assert fields["color"].via_fallback
        assert fields["cut"].value == "emerald cut"
        assert fields["clarity"].value == "eye clean"
        assert all(o.method == ExtractionMethod.FREE_TEXT_REGEX for o in observations)

    def test_fallback_uses_entry_confidence(self):
        response = NormalizedResponse(
            kind=ShapeKind.PER_IMAGE,
            images=[ImageEntry(image_index=1, confidence=0.9, texts=["pink oval"])],
        )
        fields, _ = MeasurementAggregator().aggregate(response)
        assert fields["color"].confidence == pytest.approx(0.54)

    def test_structured_value_blocks_fallback(self):
        response = NormalizedResponse(
            kind=ShapeKind.PER_IMAGE,
            observations=[obs("color", "red", 0.4)],
            images=[ImageEntry(image_index=1, texts=["looks blue"])],
        )
        fields, _ = MeasurementAggregator().aggregate(response)
        assert fields["color"].value == "red"
        assert not fields["color"].via_fallback


class TestVocabulary:
    """Test suite for vocabulary matching."""

    def test_multiword_term_first(self):
        assert match_term("color", "a fancy-yellow diamond") == "fancy yellow"

    def test_word_boundaries(self):
        assert match_term("color", "reddish tint") is None

    def test_clarity_codes_case_sensitive(self):
        assert match_term("clarity", "if the light is good") is None
        assert match_term("clarity", "graded VS1 on the label") == "VS1"


class TestPrimaryImageSelector:
    """Test suite for PrimaryImageSelector."""

    def test_highest_composite_wins(self):
        selector = PrimaryImageSelector()
        selection = selector.select([
            ImageCandidate(1, {"focus": 0.5, "lighting": 0.5}),
            ImageCandidate(2, {"focus": 0.9, "lighting": 0.9, "background": 0.9,
                               "color_fidelity": 0.9, "visibility": 0.9}),
        ])
        assert selection.image_index == 2
        assert selection.composite_score == pytest.approx(0.9)

    def test_tie_goes_to_lower_ordinal(self):
        scores = {"focus": 0.7, "lighting": 0.7}
        selector = PrimaryImageSelector()
        first = selector.select([ImageCandidate(2, dict(scores)), ImageCandidate(1, dict(scores))])
        second = selector.select([ImageCandidate(2, dict(scores)), ImageCandidate(1, dict(scores))])
        assert first.image_index == second.image_index == 1

    def test_missing_sub_scores_neutral(self):
        selection = PrimaryImageSelector().select([ImageCandidate(1, {})])
        assert selection.composite_score == pytest.approx(0.5)
        assert selection.sub_scores["visibility"] == 0.5

    def test_disqualified_never_selected(self):
        selection = PrimaryImageSelector().select([
            ImageCandidate(1, {"focus": 1.0}, disqualified=True),
            ImageCandidate(2, {"focus": 0.1}),
        ])
        assert selection.image_index == 2
        assert selection.disqualified == [1]
        assert selection.fallback_reason is None

    def test_all_disqualified_falls_back_to_first(self):
        selection = PrimaryImageSelector().select([
            ImageCandidate(2, {}, disqualified=True),
            ImageCandidate(1, {}, disqualified=True),
        ])
        assert selection.image_index == 1
        assert selection.fallback_reason

    def test_no_candidates(self):
        assert PrimaryImageSelector().select([]) is None

    def test_custom_weights_normalized(self):
        selector = PrimaryImageSelector({"focus": 3.0, "lighting": 1.0, "background": 0,
                                         "color_fidelity": 0, "visibility": 0})
        assert selector.weights["focus"] == pytest.approx(0.75)
        selection = selector.select([
            ImageCandidate(1, {"focus": 0.2, "lighting": 1.0}),
            ImageCandidate(2, {"focus": 0.9, "lighting": 0.1}),
        ])
        assert selection.image_index == 2

    def test_point_scale_sub_scores(self):
        scores = normalize_sub_scores({"sharpness": 20, "lighting": 25, "composition": 5, "color": 0.4})
        assert scores == {
            "focus": pytest.approx(0.8),
            "lighting": pytest.approx(1.0),
            "visibility": pytest.approx(0.5),
            "color_fidelity": pytest.approx(0.4),
        }

    def test_candidates_from_response(self):
        response = NormalizedResponse(
            kind=ShapeKind.PER_IMAGE,
            images=[
                ImageEntry(image_index=1, classification="Measurement Tool"),
                ImageEntry(image_index=2, classification="gem_macro", quality_scores={"focus": 0.9}),
                ImageEntry(image_index=3, classification="gem_macro"),
            ],
            primary_hint={"image_index": 3, "sub_scores": {"focus": 0.95}, "disqualified_images": [2]},
        )
        candidates = candidates_from_response(response, 3)

        assert [c.disqualified for c in candidates] == [True, True, False]
        assert candidates[2].sub_scores == {"focus": 0.95}

    def test_non_finite_sub_scores_treated_as_missing(self):
        scores = normalize_sub_scores({"focus": float("nan"), "lighting": float("inf"), "background": 10 ** 400})
        assert scores == {}
        selection = PrimaryImageSelector().select([ImageCandidate(1, scores)])
        assert selection.composite_score == pytest.approx(0.5)

    def test_every_candidate_scored(self):
        selection = PrimaryImageSelector().select([
            ImageCandidate(1, {}, disqualified=True, disqualify_reason="classified as label"),
            ImageCandidate(2, {name: 0.9 for name in ("focus", "lighting", "background", "color_fidelity", "visibility")}),
            ImageCandidate(3, {}),
        ], reasoning="crisp macro")

        assert selection.scores == {1: 0.5, 2: 0.9, 3: 0.5}
        assert selection.disqualify_reasons == {1: "classified as label"}
        assert selection.annotation_for(2) == "crisp macro"
        assert selection.annotation_for(1) == "disqualified: classified as label"
        assert selection.annotation_for(3).startswith("not selected")
