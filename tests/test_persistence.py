"""
Tests for the merge policy, run records and the progress store.
"""

import json

import pytest

from gem_analysis.models import (
    AnalysisRun,
    ExtractedField,
    ExtractionMethod,
    ImageAsset,
    Item,
    MeasurementObservation,
    PrimaryImageSelection,
    RunStatus,
)
from gem_analysis.persistence import ItemRecord, PersistenceGuard, ProgressStore, is_empty


def field_(attribute, value, confidence):
    return ExtractedField(attribute=attribute, value=value, confidence=confidence)


@pytest.fixture
def stored_item(repository):
    item = Item(
        id="gem-1",
        images=[
            ImageAsset(id="gem-1-a", location="a.jpg", ordinal=0),
            ImageAsset(id="gem-1-b", location="b.jpg", ordinal=1),
        ],
    )
    repository.add_item(item)
    return item


class TestPersistenceGuard:
    """Test suite for PersistenceGuard."""

    def test_threshold_boundary(self, guard, database, stored_item):
        report = guard.merge("gem-1", {
            "weight": field_("weight", 1.2, 0.70),
            "color": field_("color", "blue", 0.69),
        })

        assert report.written == ["weight"]
        assert report.skipped == {"color": "below_threshold"}
        with database.session_scope() as session:
            record = session.get(ItemRecord, "gem-1")
            assert record.ai_weight_carats == 1.2
            assert record.ai_color is None
            assert record.ai_confidences == {"weight": 0.7}
            assert record.ai_extracted_at is not None

    def test_manual_value_never_overwritten(self, guard, repository, database):
        repository.add_item(Item(id="gem-2", manual_fields={"weight_carats": 2.0, "color": "  "}))

        report = guard.merge("gem-2", {
            "weight": field_("weight", 1.5, 0.99),
            "color": field_("color", "red", 0.9),
        })

        assert report.skipped == {"weight": "manual_value_present"}
        assert report.written == ["color"]
        with database.session_scope() as session:
            record = session.get(ItemRecord, "gem-2")
            assert record.weight_carats == 2.0
            assert record.ai_weight_carats is None
            assert record.ai_color == "red"

    def test_concurrent_manual_edit_wins(self, guard, repository, database, stored_item):
        """A manual value written after the item was read is still respected."""
        item = repository.get_item("gem-1")
        assert item.manual_fields["weight_carats"] is None

        with database.session_scope() as session:
            session.get(ItemRecord, "gem-1").weight_carats = 3.3

        report = guard.merge("gem-1", {"weight": field_("weight", 1.0, 0.95)})
        assert report.written == []
        assert report.skipped == {"weight": "manual_value_present"}

    def test_primary_image_pointer(self, guard, database, stored_item):
        selection = PrimaryImageSelection(
            image_index=2, composite_score=0.81, image_id="gem-1-b", reasoning="sharpest"
        )
        report = guard.merge("gem-1", {}, selection)

        assert report.primary_image_id == "gem-1-b"
        with database.session_scope() as session:
            record = session.get(ItemRecord, "gem-1")
            assert record.primary_image_id == "gem-1-b"
            image = [i for i in record.images if i.id == "gem-1-b"][0]
            assert image.ai_score == 0.81
            assert image.ai_reasoning == "sharpest"

    def test_every_image_annotated(self, guard, database, stored_item):
        selection = PrimaryImageSelection(
            image_index=2,
            composite_score=0.81,
            image_id="gem-1-b",
            reasoning="sharpest",
            scores={1: 0.5, 2: 0.81},
            disqualify_reasons={1: "classified as measurement_tool"},
            asset_ids={1: "gem-1-a", 2: "gem-1-b"},
        )
        guard.merge("gem-1", {}, selection)

        with database.session_scope() as session:
            images = {i.id: (i.ai_score, i.ai_reasoning) for i in session.get(ItemRecord, "gem-1").images}
        assert images == {
            "gem-1-a": (0.5, "disqualified: classified as measurement_tool"),
            "gem-1-b": (0.81, "sharpest"),
        }

    def test_missing_item_does_not_raise(self, guard):
        report = guard.merge("nope", {"weight": field_("weight", 1.0, 0.9)})
        assert report.skipped == {"weight": "item_missing"}

    def test_count_data_sources(self, guard, repository):
        repository.add_item(Item(id="gem-3", manual_fields={"weight_carats": 1.0, "cut": "oval"}))
        guard.merge("gem-3", {
            "weight": field_("weight", 1.1, 0.9),
            "color": field_("color", "green", 0.9),
        })
        assert guard.count_data_sources("gem-3") == {"manual": 2, "ai_only": 1, "both": 0, "empty": 4}

    def test_invalid_threshold(self, database):
        with pytest.raises(ValueError):
            PersistenceGuard(database, threshold=1.5)

    def test_is_empty(self):
        assert is_empty(None)
        assert is_empty("   ")
        assert not is_empty(0.0)
        assert not is_empty("D")


class TestItemRepository:
    """Test suite for ItemRepository."""

    def test_round_trip_item(self, repository, stored_item):
        item = repository.get_item("gem-1")
        assert [i.id for i in item.ordered_images] == ["gem-1-a", "gem-1-b"]
        assert repository.list_item_ids() == ["gem-1"]

    def test_unknown_manual_field_rejected(self, repository):
        with pytest.raises(ValueError):
            repository.add_item(Item(id="bad", manual_fields={"price": 10}))

    def test_save_run_keeps_every_field(self, repository, stored_item):
        run = AnalysisRun(item_id="gem-1", model="gpt-5-mini", status=RunStatus.PARTIALLY_EXTRACTED)
        weight_obs = MeasurementObservation("weight", 1.2, 0.95, ExtractionMethod.INSTRUMENT_READING, 1, "ct")
        run.observations = [weight_obs]
        run.fields = {
            "weight": ExtractedField("weight", 1.2, 0.95, [weight_obs]),
            "color": ExtractedField("color", "blue", 0.3, via_fallback=True),
        }
        run.written_fields = ["weight"]
        run.skipped_fields = {"color": "below_threshold"}
        run.add_usage(6500, 2200, 0.02295)

        run_id = repository.save_run(run)
        latest = repository.latest_run("gem-1")

        assert latest["run_id"] == run_id == run.run_id
        assert latest["status"] == "partially_extracted"
        assert set(latest["fields"]) == {"weight", "color"}
        assert latest["fields"]["color"]["via_fallback"] is True
        assert latest["observation_count"] == 1
        assert latest["cost_usd"] == pytest.approx(0.02295)

    def test_runs_accumulate(self, repository, stored_item):
        for status in (RunStatus.FAILED, RunStatus.SUCCEEDED):
            repository.save_run(AnalysisRun(item_id="gem-1", model="gpt-5-mini", status=status))
        runs = repository.list_runs("gem-1")
        assert len(runs) == 2
        assert runs[0]["status"] == "succeeded"


class TestProgressStore:
    """Test suite for ProgressStore."""

    def test_checkpoint_survives_restart(self, tmp_path):
        path = tmp_path / "progress.json"
        store = ProgressStore(path)
        assert store.claim("a")
        store.complete("a", RunStatus.SUCCEEDED, cost_usd=0.02)
        store.claim("b")

        reopened = ProgressStore(path)
        assert reopened.is_terminal("a")
        assert not reopened.is_terminal("b")
        assert reopened.status_of("b") == RunStatus.RUNNING
        assert reopened.status_of("unknown") == RunStatus.PENDING
        assert json.loads(path.read_text())["items"]["a"]["cost_usd"] == 0.02

    def test_terminal_item_cannot_be_claimed(self, progress_store):
        progress_store.claim("a")
        progress_store.complete("a", RunStatus.FAILED, reason="provider_error")
        assert not progress_store.claim("a")

    def test_reset_only_failed(self, progress_store):
        progress_store.complete("a", RunStatus.FAILED, reason="x")
        progress_store.complete("b", RunStatus.SUCCEEDED)

        assert progress_store.reset(only_failed=True) == 1
        assert progress_store.status_of("a") == RunStatus.PENDING
        assert progress_store.is_terminal("b")

    def test_reset_selected_items(self, progress_store):
        progress_store.complete("a", RunStatus.SUCCEEDED)
        progress_store.complete("b", RunStatus.SUCCEEDED)
        assert progress_store.reset(item_ids=["b"]) == 1
        assert progress_store.terminal_ids() == ["a"]

    def test_non_terminal_completion_rejected(self, progress_store):
        with pytest.raises(ValueError):
            progress_store.complete("a", RunStatus.RUNNING)

    def test_summary(self, progress_store):
        progress_store.complete("a", RunStatus.SUCCEEDED, cost_usd=0.01)
        progress_store.complete("b", RunStatus.FAILED, cost_usd=0.02)
        summary = progress_store.summary()
        assert summary["tracked"] == 2
        assert summary["by_status"]["succeeded"] == 1
        assert summary["total_cost_usd"] == pytest.approx(0.03)

    def test_cost_accumulates_across_attempts(self, progress_store):
        progress_store.complete("a", RunStatus.FAILED, cost_usd=0.02, reason="provider_error: timeout")
        progress_store.reset(only_failed=True)
        progress_store.claim("a")
        progress_store.complete("a", RunStatus.SUCCEEDED, cost_usd=0.03)

        assert progress_store.summary()["total_cost_usd"] == pytest.approx(0.05)
        assert progress_store.status_of("a") == RunStatus.SUCCEEDED
