import json
from pathlib import Path

import pytest

from meta_tracker.config import TrackableConfig, TrackerConfig, load_config


def test_load_config_json(tmp_path: Path):
    cfg_path = tmp_path / "tracker.json"
    cfg_path.write_text(
        json.dumps(
            {
                "tracker_name": "deskcam",
                "device": 2,
                "fps": 20,
                "width": 640,
                "height": 480,
                "filter_window": 5,
                "calibration_scale": 0.5,
                "trackables": [
                    [1, 2, 3, 4],
                    {"name": "board", "upper_left": 10, "upper_right": 11, "lower_left": 12, "lower_right": 13},
                ],
            }
        ),
        encoding="utf-8",
    )

    cfg = load_config(cfg_path)
    assert cfg.tracker_name == "deskcam"
    assert cfg.device == 2
    assert (cfg.width, cfg.height) == (640, 480)
    assert cfg.filter_window == 5
    assert cfg.calibration_scale == 0.5
    assert cfg.trackables[0] == TrackableConfig(1, 2, 3, 4)
    assert cfg.trackables[1].name == "board"
    assert cfg.trackables[1].ids == (10, 11, 12, 13)

    cfg.apply_overrides(tracker_name="other", fps=None)
    assert cfg.tracker_name == "other"
    assert cfg.fps == 20


def test_load_config_yaml(tmp_path: Path):
    cfg_path = tmp_path / "tracker.yaml"
    cfg_path.write_text(
        "tracker_name: yamlcam\n"
        "dry_run: true\n"
        "max_frames: 10\n"
        "trackables:\n"
        "  - [5, 6, 7, 8]\n",
        encoding="utf-8",
    )
    cfg = load_config(cfg_path)
    assert cfg.tracker_name == "yamlcam"
    assert cfg.dry_run is True
    assert cfg.max_frames == 10
    assert cfg.trackables[0].ids == (5, 6, 7, 8)


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.json")


@pytest.mark.parametrize("payload", [
    [1, 2, 3],
    {"trackables": [[1, 2, 3]]},
    {"trackables": [{"upper_left": 1}]},
    {"trackables": "1,2,3,4"},
    {"filter_window": 0},
])
def test_malformed_config_is_rejected(tmp_path: Path, payload):
    cfg_path = tmp_path / "bad.json"
    cfg_path.write_text(json.dumps(payload), encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(cfg_path)


def test_config_defaults():
    cfg = TrackerConfig()
    assert cfg.filter_window == 1
    assert cfg.disable_when_not_tracked
    assert not cfg.partial_counts_as_miss
    assert cfg.trackables == []
    assert cfg.as_dict()["tracker_name"] == "tracker"
