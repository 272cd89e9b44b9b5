#!/usr/bin/env python3
"""
End-to-end tests for the command line analysis: config file in, tables,
CSV export and projection plot out.
"""

import json
import os
import sys

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402
import pytest  # noqa: E402
from jsonschema import ValidationError  # noqa: E402

import run_analysis as cli  # noqa: E402
from core import PAIRS_CSV_FILENAME, PLOT_FILENAME, run_analysis  # noqa: E402
from shared_models import CalibrationConfidence, PredictionConfidence  # noqa: E402

EXAMPLE_CONFIG = os.path.join(
    os.path.dirname(__file__), "..", "..", "example_config.json"
)


@pytest.fixture
def config_path(tmp_path):
    with open(EXAMPLE_CONFIG) as f:
        config = json.load(f)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    return str(path)


def write_config(tmp_path, config):
    path = tmp_path / "custom.json"
    path.write_text(json.dumps(config))
    return str(path)


def test_example_config_returns_results(config_path):
    df_pairs, calibration, prediction, figure = run_analysis(
        config_path, return_results=True
    )
    try:
        assert isinstance(df_pairs, pd.DataFrame)
        assert len(df_pairs) == 2
        assert df_pairs["is_valid"].all()

        # Pair ratios 0.775 and ~0.829
        assert calibration.data_points == 2
        assert calibration.learned_p_ratio == pytest.approx((0.775 + 2.9 / 3.5) / 2)
        assert calibration.confidence == CalibrationConfidence.MEDIUM

        assert prediction.target_weight_kg == 81.0
        assert prediction.assumptions.p_ratio_used == pytest.approx(
            calibration.learned_p_ratio
        )
        assert prediction.confidence_level <= PredictionConfidence.REASONABLE
        assert figure is not None
    finally:
        plt.close(figure)


def test_target_weight_override(config_path):
    _, _, prediction, figure = run_analysis(
        config_path, target_weight=80.0, return_results=True
    )
    plt.close(figure)
    assert prediction.target_weight_kg == 80.0
    weight_change = 80.0 - 84.5
    fat_change = prediction.predicted_fat_mass_kg - 18.5
    lean_change = prediction.predicted_lean_mass_kg - 62.6
    assert fat_change + lean_change == pytest.approx(weight_change)


def test_writes_csv_and_plot(config_path, tmp_path, capsys):
    exit_code = run_analysis(config_path, target_weeks=8, output_dir=str(tmp_path))

    assert exit_code == 0
    csv_path = tmp_path / PAIRS_CSV_FILENAME
    assert csv_path.exists()
    assert (tmp_path / PLOT_FILENAME).exists()

    df = pd.read_csv(csv_path)
    assert list(df["start_date"]) == ["2024-01-06", "2024-03-02"]

    output = capsys.readouterr().out
    assert "Learned P-ratio" in output
    assert "Required deficit for 8 weeks" in output
    assert "Optimistic" in output


def test_missing_config_returns_error_code(tmp_path, capsys):
    exit_code = run_analysis(str(tmp_path / "missing.json"), output_dir=str(tmp_path))
    assert exit_code == 1
    assert "Error" in capsys.readouterr().out


def test_missing_config_raises_in_results_mode(tmp_path):
    with pytest.raises(FileNotFoundError):
        run_analysis(str(tmp_path / "missing.json"), return_results=True)


def test_invalid_config_raises_validation_error(tmp_path):
    path = write_config(
        tmp_path,
        {"user_info": {}, "scan_history": [{"date": "2024-01-01"}]},
    )
    with pytest.raises(ValidationError):
        run_analysis(path, return_results=True)
    assert run_analysis(path, output_dir=str(tmp_path)) == 1


def test_single_scan_uses_population_model(tmp_path):
    path = write_config(
        tmp_path,
        {
            "user_info": {"biological_sex": "f", "training_age": "beginner"},
            "scan_history": [
                {"date": "01/15/2024", "total_mass_kg": 70.0, "body_fat_percent": 32.0}
            ],
            "behavior": {
                "avg_daily_protein_grams": 120,
                "avg_weekly_training_sets": 10,
                "avg_daily_deficit_kcal": 400,
                "deficit_percent": 20,
            },
        },
    )
    df_pairs, calibration, prediction, figure = run_analysis(
        path, return_results=True
    )
    plt.close(figure)

    assert df_pairs.empty
    assert calibration is None
    assert prediction.target_weight_kg == 65.0
    assert prediction.confidence_factors[1].startswith("No personal DEXA history")


def test_surplus_target_prints_gain_projection(config_path, tmp_path, capsys):
    exit_code = run_analysis(config_path, target_weight=88.0, output_dir=str(tmp_path))
    assert exit_code == 0
    output = capsys.readouterr().out
    assert "Surplus phase" in output
    assert "normalized FFMI" in output


def test_cli_help_config(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["run_analysis.py", "--help-config"])
    assert cli.main() == 0
    assert "JSON Configuration Format" in capsys.readouterr().out


def test_cli_missing_file(monkeypatch, tmp_path):
    monkeypatch.setattr(
        sys, "argv", ["run_analysis.py", str(tmp_path / "nope.json")]
    )
    assert cli.main() == 1


def test_cli_runs_analysis(monkeypatch, config_path, tmp_path, capsys):
    monkeypatch.setattr(
        sys,
        "argv",
        ["run_analysis.py", "-c", config_path, "-t", "82", "-o", str(tmp_path)],
    )
    assert cli.main() == 0
    output = capsys.readouterr().out
    assert "Analysis completed successfully!" in output
    assert (tmp_path / PAIRS_CSV_FILENAME).exists()
    assert os.path.join(str(tmp_path), PAIRS_CSV_FILENAME) in output
    assert os.path.join(str(tmp_path), PLOT_FILENAME) in output


@pytest.mark.parametrize("target", ["0", "-70"])
def test_cli_rejects_non_positive_target(
    monkeypatch, config_path, tmp_path, capsys, target
):
    monkeypatch.setattr(
        sys,
        "argv",
        ["run_analysis.py", "-c", config_path, "-t", target, "-o", str(tmp_path)],
    )
    assert cli.main() == 1
    assert "--target-weight must be positive" in capsys.readouterr().out
    assert not (tmp_path / PAIRS_CSV_FILENAME).exists()
