"""Unit tests for CSV/JSON result rendering and dual-format persistence."""

from __future__ import annotations

import csv
import io
import json
from pathlib import Path

import pytest

from listing_harvester.core.models.jobs import ExportFormat
from listing_harvester.workers.exporters import (
    collect_columns,
    load_results,
    render_csv,
    render_json,
    result_path,
    save_results,
)
from tests.factories.jobs import VenueItemFactory


def _parse_csv(text: str) -> list[dict[str, str]]:
    return list(csv.DictReader(io.StringIO(text)))


class TestRenderCsv:
    def test_special_characters_survive_a_reparse(self) -> None:
        items = [
            {"name": "Smith, Jones & Co", "price": 'The "Grand" Hall', "rating": None},
            {"name": "Line\nBreak Barn", "price": "$1,000", "rating": 4.5},
        ]

        rows = _parse_csv(render_csv(items))

        assert rows[0]["name"] == "Smith, Jones & Co"
        assert rows[0]["price"] == 'The "Grand" Hall'
        assert rows[0]["rating"] == ""
        assert rows[1]["name"] == "Line\nBreak Barn"
        assert rows[1]["rating"] == "4.5"

    def test_inner_quotes_are_doubled(self) -> None:
        text = render_csv([{"name": 'Say "hi"'}])
        assert text == 'name\n"Say ""hi"""\n'

    def test_columns_are_union_in_first_seen_order(self) -> None:
        items = [{"name": "A", "url": "u1"}, {"name": "B", "phone": "555"}]

        assert collect_columns(items) == ["name", "url", "phone"]
        rows = _parse_csv(render_csv(items))
        assert rows[0]["phone"] == ""
        assert rows[1]["url"] == ""

    def test_nested_values_and_booleans(self) -> None:
        rows = _parse_csv(render_csv([{"tags": ["barn", "rustic"], "featured": True}]))
        assert json.loads(rows[0]["tags"]) == ["barn", "rustic"]
        assert rows[0]["featured"] == "true"

    def test_empty_list_renders_empty_text(self) -> None:
        assert render_csv([]) == ""


class TestRenderJson:
    def test_none_values_are_omitted(self) -> None:
        items = [{"name": "A", "rating": None, "reviews": 0, "url": "u"}]

        parsed = json.loads(render_json(items))

        assert parsed == [{"name": "A", "reviews": 0, "url": "u"}]
        assert "null" not in render_json(items)

    def test_non_ascii_is_written_verbatim(self) -> None:
        assert "Café Løvland" in render_json([{"name": "Café Løvland"}])

    def test_empty_list_renders_empty_array(self) -> None:
        assert json.loads(render_json([])) == []


class TestSaveResults:
    @pytest.mark.parametrize("requested", [ExportFormat.CSV, ExportFormat.JSON])
    def test_both_formats_are_written(self, data_dir: Path, requested: ExportFormat) -> None:
        items = VenueItemFactory.build_batch(3)

        primary = save_results(items, "job-1", requested, data_dir)

        assert primary == result_path(data_dir, "job-1", requested)
        assert (data_dir / "job-1.csv").exists()
        assert (data_dir / "job-1.json").exists()
        assert len(_parse_csv((data_dir / "job-1.csv").read_text(encoding="utf-8"))) == 3

    def test_load_results_reads_the_json_file(self, data_dir: Path) -> None:
        items = VenueItemFactory.build_batch(2)
        save_results(items, "job-2", "csv", data_dir)

        loaded = load_results(data_dir, "job-2")

        assert [item["name"] for item in loaded] == [item["name"] for item in items]

    def test_load_results_missing_file(self, data_dir: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_results(data_dir, "nope")

    def test_creates_missing_data_dir(self, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "results"
        save_results([], "job-3", ExportFormat.JSON, target)
        assert (target / "job-3.json").read_text(encoding="utf-8") == "[]"
