"""
Command line interface tests.
"""

import json

import pytest
import yaml
from click.testing import CliRunner

from verimed.interface.cli import cli

from conftest import SMALL_SIZES, TINY_MODEL, write_image


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    config = {
        "preprocessing": {"standard_sizes": SMALL_SIZES},
        "model": TINY_MODEL,
        "training": {
            model_type: {"epochs": 1, "batch_size": 4}
            for model_type in ("packaging", "pill", "batch_code", "fusion")
        },
        "logging": {"log_dir": None},
    }
    with open(path, "w") as f:
        yaml.safe_dump(config, f)
    return path


@pytest.fixture
def run(config_file, tmp_path):
    runner = CliRunner()
    root = tmp_path / "root"

    def invoke(*args, log_level="INFO"):
        options = ["--config", str(config_file), "--root", str(root), "--log-level", log_level]
        return runner.invoke(cli, options + list(args))
    return invoke


@pytest.fixture
def photo(tmp_path):
    return write_image(tmp_path / "photo.png", width=300, height=240)


def test_stats_empty(run):
    result = run("stats")

    assert result.exit_code == 0
    assert "Total images: 0" in result.output


def test_collect_then_stats(run, photo):
    result = run("collect", str(photo), "--modality", "pill", "--counterfeit", "--quality", "6",
                 "--name", "Ibuprofen")

    assert result.exit_code == 0
    assert "Collected med_" in result.output

    stats = run("stats")
    assert "Counterfeit: 1" in stats.output
    assert "Pill: 1" in stats.output


def test_collect_rejects_quality_out_of_range(run, photo):
    result = run("collect", str(photo), "--modality", "pill", "--quality", "11")

    assert result.exit_code == 2


def test_export_manifest(run, photo, tmp_path):
    run("collect", str(photo), "--modality", "packaging", "--quality", "8")
    output = tmp_path / "export" / "manifest.json"

    result = run("export", "--output", str(output))

    assert result.exit_code == 0
    manifest = json.loads(output.read_text())
    assert len(manifest["images"]) == 1
    assert manifest["stats"]["total_images"] == 1


def test_clear(run, photo):
    run("collect", str(photo), "--modality", "packaging", "--quality", "8")

    result = run("clear", "--yes")

    assert result.exit_code == 0
    assert "Total images: 0" in run("stats").output


def test_versions_empty(run):
    result = run("versions")

    assert result.exit_code == 0
    assert "No model versions registered" in result.output


def test_rollback_without_versions_fails(run):
    result = run("rollback", "fusion")

    assert result.exit_code != 0
    assert "Rollback failed" in result.output


def test_train_without_data_fails(run):
    result = run("train", "pill")

    assert result.exit_code != 0
    assert "Training failed" in result.output


def test_train_deploys_version(run, tmp_path):
    for i in range(4):
        image = write_image(tmp_path / f"pill_{i}.png", seed=i)
        label = "--authentic" if i % 2 == 0 else "--counterfeit"
        run("collect", str(image), "--modality", "pill", label, "--quality", "7")

    result = run("train", "pill", "--epochs", "1")

    assert result.exit_code == 0, result.output
    assert "pill: " in result.output
    assert "pill_model.pt" in result.output
    assert "1.1.0" in run("versions", "--model-type", "pill").output


def test_analyze_requires_a_photo(run):
    result = run("analyze")

    assert result.exit_code == 2


def test_analyze_without_models(run, photo):
    result = run("analyze", "--packaging", str(photo))

    assert result.exit_code == 0
    assert "Medicine appears to be COUNTERFEIT (50.0% confidence)" in result.output
    assert "packaging: N/A" in result.output


def test_analyze_json_output(run, photo):
    result = run("analyze", "--pill", str(photo), "--name", "Ibuprofen", "--json-output",
                 log_level="ERROR")

    data = json.loads(result.output)
    assert data["confidence"] == 0.5
    assert data["known_name"] == "Ibuprofen"


def test_analyze_unreadable_photo(run, tmp_path):
    corrupt = tmp_path / "corrupt.jpg"
    corrupt.write_bytes(b"not a photo")

    result = run("analyze", "--pill", str(corrupt))

    assert result.exit_code != 0
    assert "Analysis unavailable" in result.output


def test_info(run):
    result = run("info")

    assert result.exit_code == 0
    assert "Active fusion model: none" in result.output


def test_diagnose_without_models(run):
    result = run("diagnose", "--iterations", "1")

    assert result.exit_code == 0
    assert "[PASS] initialization" in result.output
    assert "[FAIL] fusion_model" in result.output
    assert "Passed 4/9 checks" in result.output
