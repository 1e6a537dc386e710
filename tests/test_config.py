"""
Tests for EditorConfig loading and validation.
"""
import json
import logging

import pytest

from affine_editor import EditorConfig
from affine_editor.editor_common import EditorConfigError


class TestEditorConfig:

    def test_defaults(self):
        config = EditorConfig()
        assert config.selection_padding == 31.0
        assert config.handle_radius_px == 4.0
        assert config.max_control_points == 3
        assert config.history_limit is None

    @pytest.mark.parametrize("changes", [
        {"handle_radius_px": 0},
        {"rotation_snap_deg": -10},
        {"selection_padding": -1},
        {"max_control_points": 4},
        {"max_control_points": 0},
        {"history_limit": 50},
        {"pivot_radius_factor": "big"},
    ])
    def test_invalid_values_raise(self, changes):
        with pytest.raises(EditorConfigError):
            EditorConfig(**changes)

    def test_from_mapping_ignores_unknown_keys(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = EditorConfig.from_mapping({"rotation_snap_deg": 15, "colour": "red"})
        assert config.rotation_snap_deg == 15
        assert "colour" in caplog.text

    def test_to_dict_round_trip(self):
        config = EditorConfig(max_control_points=2)
        assert EditorConfig.from_mapping(config.to_dict()) == config

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "editor.json"
        path.write_text(json.dumps({"handle_radius_px": 6}), encoding="utf-8")
        assert EditorConfig.from_json_file(str(path)).handle_radius_px == 6

    def test_from_json_file_errors(self, tmp_path):
        with pytest.raises(EditorConfigError):
            EditorConfig.from_json_file(str(tmp_path / "missing.json"))
        broken = tmp_path / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        with pytest.raises(EditorConfigError):
            EditorConfig.from_json_file(str(broken))
        listed = tmp_path / "list.json"
        listed.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(EditorConfigError):
            EditorConfig.from_json_file(str(listed))
