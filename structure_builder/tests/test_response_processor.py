"""Tests for the response processor (no API calls)."""

import json

import pytest

from structure_builder.models import StructureModel
from structure_builder.services.response_processor import (
    clean_response,
    extract_json_object,
    is_valid_structure,
    looks_truncated,
    process_response,
    repair_json,
    run_strategies,
)


def _voxels(n, material="STONE"):
    return [{"x": i, "y": 0, "z": 0, "material": material, "data": ""} for i in range(n)]


def _structure_json(n, **extra):
    return json.dumps({
        "name": "Test Wall",
        "description": "A straight wall",
        "size": {"width": n, "height": 1, "depth": 1},
        "blocks": _voxels(n),
        **extra,
    })


class TestCleanResponse:
    def test_strips_markdown_fences(self):
        raw = "```json\n" + _structure_json(12) + "\n```"
        cleaned = clean_response(raw)
        assert cleaned.startswith("{")
        assert cleaned.endswith("}")
        assert json.loads(cleaned)["name"] == "Test Wall"

    def test_strips_surrounding_prose(self):
        raw = "Here is your structure:\n" + _structure_json(12) + "\nEnjoy!"
        assert json.loads(clean_response(raw))["name"] == "Test Wall"

    def test_empty_input(self):
        assert clean_response("") == "{}"
        assert clean_response(None) == "{}"


class TestExtractJsonObject:
    def test_first_object_in_prose(self):
        raw = 'Sure! {"a": {"b": 1}} and also {"c": 2}'
        assert json.loads(extract_json_object(raw)) == {"a": {"b": 1}}

    def test_braces_inside_strings_ignored(self):
        raw = 'text {"name": "a } tricky { name", "n": 1} tail'
        assert json.loads(extract_json_object(raw))["n"] == 1

    def test_escaped_quotes(self):
        raw = 'x {"name": "say \\"hi\\" }", "n": 2} y'
        assert json.loads(extract_json_object(raw))["n"] == 2

    def test_no_object(self):
        assert extract_json_object("no json here") is None
        assert extract_json_object('{"unterminated": [1, 2') is None


class TestLooksTruncated:
    def test_complete(self):
        assert looks_truncated('{"a": [1, 2]}') is False

    def test_open_array(self):
        assert looks_truncated('{"a": [1, 2') is True

    def test_trailing_comma(self):
        assert looks_truncated('{"a": 1,') is True

    def test_open_string(self):
        assert looks_truncated('{"a": "unfinished') is True


class TestRepairJson:
    def test_complete_json_unchanged(self):
        raw = '{"a":1,"b":[2,3]}'
        assert repair_json(raw) == raw

    def test_missing_closers(self):
        assert json.loads(repair_json('{"a": {"b": [1, 2, 3')) == {"a": {"b": [1, 2, 3]}}

    def test_trailing_commas(self):
        assert json.loads(repair_json('{"a": [1, 2, ], "b": 3, }')) == {"a": [1, 2], "b": 3}

    def test_unterminated_string_dropped(self):
        assert json.loads(repair_json('{"name": "Tower", "desc')) == {"name": "Tower"}

    def test_partial_literal_dropped(self):
        assert json.loads(repair_json('{"a": 1, "b": tr')) == {"a": 1}

    def test_partial_fraction_dropped(self):
        assert json.loads(repair_json('{"a": 1.')) == {"a": 1}

    def test_voxel_array_cut_after_last_complete_voxel(self):
        raw = (
            '{"name": "T", "blocks": [{"x": 1, "y": 2, "z": 3, "material": "STONE"}, '
            '{"x": 4, "y":'
        )
        data = json.loads(repair_json(raw))
        assert data["blocks"] == [{"x": 1, "y": 2, "z": 3, "material": "STONE"}]

    def test_string_braces_ignored(self):
        raw = '{"a":"{{{"}'
        assert repair_json(raw) == raw


class TestValidity:
    def test_minimum_voxel_boundary(self):
        assert is_valid_structure(StructureModel(placements=_voxels(10))) is False
        assert is_valid_structure(StructureModel(placements=_voxels(11))) is True

    def test_null_placements_invalid(self):
        assert is_valid_structure(StructureModel()) is False
        assert is_valid_structure(None) is False

    def test_ten_voxels_fall_back(self):
        model = process_response(_structure_json(10), "a wall")
        assert model.name.startswith("Fallback")
        assert model.voxel_count > 10

    def test_eleven_voxels_accepted(self):
        model = process_response(_structure_json(11), "a wall")
        assert model.name == "Test Wall"
        assert model.voxel_count == 11


class TestStrategies:
    def test_direct_wins_for_valid_json(self):
        outcomes = list(run_strategies(_structure_json(12)))
        assert outcomes[0].strategy == "direct"
        assert outcomes[0].ok

    def test_failed_strategy_reports_error(self):
        outcome = next(run_strategies("not json"))
        assert outcome.strategy == "direct"
        assert not outcome.ok
        assert outcome.error

    def test_placements_key_accepted(self):
        raw = json.dumps({"name": "P", "placements": _voxels(12)})
        assert process_response(raw, "x").voxel_count == 12

    def test_streaming_keeps_voxels_before_truncation(self):
        body = ", ".join(json.dumps(v) for v in _voxels(15))
        raw = '{"name": "Cut", "description": "cut off", "blocks": [' + body + ', {"x": 99, "y"'
        model = process_response(raw, "a wall")
        assert model.name == "Cut"
        assert model.voxel_count == 15
        assert model.placements[-1].x == 14

    def test_streaming_skips_malformed_voxels(self):
        voxels = _voxels(12) + [{"x": 1.5, "y": 0, "z": 0, "material": "STONE"}, {"x": 1, "y": 0, "z": 0}]
        body = ", ".join(json.dumps(v) for v in voxels)
        raw = '{"name": "Mixed", "blocks": [' + body + ",]}"
        model = process_response(raw, "a wall")
        assert model.name == "Mixed"
        assert model.voxel_count == 12

    def test_null_data_normalised(self):
        voxels = _voxels(11)
        voxels[0]["data"] = None
        model = process_response(json.dumps({"name": "N", "blocks": voxels}), "x")
        assert model.placements[0].data == ""

    def test_size_derived_when_missing(self):
        raw = json.dumps({"name": "NoSize", "blocks": _voxels(12)})
        model = process_response(raw, "x")
        assert (model.size.width, model.size.height, model.size.depth) == (12, 1, 1)

    def test_size_derived_when_zero(self):
        raw = json.dumps({"name": "Zero", "size": {"width": 0, "height": 0, "depth": 0}, "blocks": _voxels(12)})
        model = process_response(raw, "x")
        assert model.size.width == 12

    def test_declared_size_kept(self):
        raw = json.dumps({"name": "S", "size": {"width": 30, "height": 5, "depth": 30}, "blocks": _voxels(12)})
        assert process_response(raw, "x").size.width == 30


class TestNeverFails:
    @pytest.mark.parametrize("raw", [
        "",
        None,
        "I'm sorry, I can't design that.",
        "{}",
        "[1, 2, 3]",
        '{"name": "x", "blocks": null}',
        '{"name": "x", "blocks": [',
        _structure_json(12),
        _structure_json(12)[:-1] + ",}",
        _structure_json(20)[:200],
        "```json\n" + _structure_json(12) + "\n```",
    ])
    def test_always_returns_valid_model(self, raw):
        model = process_response(raw, "a medieval castle")
        assert is_valid_structure(model)
        assert model.size is not None

    def test_fallback_matches_description(self):
        model = process_response("no json", "a cozy cottage")
        assert model.name == "Fallback House"

    def test_round_trip(self):
        original = process_response(_structure_json(14), "x")
        again = process_response(original.to_wire_json(), "x")
        assert again == original
