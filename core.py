"""
Core P-Ratio Analysis Orchestration

This module wires the engine modules together for the command line: it loads
and validates a JSON configuration, calibrates the user's P-ratio from their
scan history, runs the factor model and the composition predictor, and
renders the results as tables, a CSV export and a projection plot.

Sections:
- Configuration schema and loading
- Data processing and orchestration
- Tables and plotting
"""

import dataclasses
import json
import logging
import os

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from jsonschema import ValidationError, validate
from tabulate import tabulate

from calibration import analyze_scan_history, calibrate_p_ratio_from_scans
from p_ratio import PartitionRatioCalculator, get_p_ratio_description
from prediction import (
    CompositionPredictor,
    calculate_projection_date,
    calculate_required_deficit,
    estimate_time_to_target,
    explain_weight_loss_breakdown,
    generate_weight_scenarios,
    predict_weight_gain,
)
from recommendations import estimate_improvement_potential, generate_recommendations
from shared_models import (
    convert_dict_to_inputs,
    convert_dict_to_profile,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_TARGET_CHANGE_KG = -5.0
PAIRS_CSV_FILENAME = "scan_pairs.csv"
PLOT_FILENAME = "projection_plot.png"

_MASS = {"type": "number", "minimum": 0}

# JSON Schema for configuration validation
CONFIG_SCHEMA = {
    "type": "object",
    "required": ["user_info", "scan_history"],
    "properties": {
        "user_info": {
            "type": "object",
            "required": ["biological_sex"],
            "properties": {
                "user_id": {"type": "string"},
                "biological_sex": {
                    "type": "string",
                    "pattern": "^(m|f|male|female|M|F|Male|Female|MALE|FEMALE)$",
                },
                "training_age": {
                    "type": "string",
                    "pattern": "^(beginner|intermediate|advanced|Beginner|Intermediate|Advanced|BEGINNER|INTERMEDIATE|ADVANCED)$",
                },
                "is_enhanced": {"type": "boolean"},
                "height_cm": {"type": "number", "minimum": 50, "maximum": 272},
            },
            "additionalProperties": False,
        },
        "scan_history": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["date", "total_mass_kg"],
                "anyOf": [
                    {"required": ["fat_mass_kg"]},
                    {"required": ["body_fat_percent"]},
                ],
                "properties": {
                    "id": {"type": "string"},
                    "date": {"type": "string"},
                    "total_mass_kg": {"type": "number", "exclusiveMinimum": 0},
                    "fat_mass_kg": _MASS,
                    "lean_mass_kg": _MASS,
                    "bone_mineral_kg": _MASS,
                    "body_fat_percent": {"type": "number", "minimum": 0, "maximum": 100},
                    "provider": {"type": "string"},
                    "notes": {"type": "string"},
                    "is_baseline": {"type": "boolean"},
                    "conditions": {
                        "type": "object",
                        "properties": {
                            "time_of_day": {
                                "enum": [
                                    "morning_fasted",
                                    "morning_fed",
                                    "afternoon",
                                    "evening",
                                ]
                            },
                            "hydration_status": {
                                "enum": [
                                    "normal",
                                    "dehydrated",
                                    "overhydrated",
                                    "unknown",
                                ]
                            },
                            "recent_workout": {"type": "boolean"},
                            "same_provider_as_previous": {"type": "boolean"},
                        },
                        "additionalProperties": False,
                    },
                },
                "additionalProperties": False,
            },
        },
        "behavior": {
            "type": "object",
            "properties": {
                "avg_daily_protein_grams": _MASS,
                "avg_daily_protein_per_kg": _MASS,
                "avg_weekly_training_sets": _MASS,
                "avg_daily_deficit_kcal": {"type": "number"},
                "deficit_percent": {"type": "number"},
            },
            "additionalProperties": False,
        },
        "target_weight_kg": {"type": "number", "exclusiveMinimum": 0},
    },
    "additionalProperties": False,
}


class ConfigurationError(Exception):
    """Raised when a schema-valid configuration cannot be turned into model inputs"""

    pass


# ---------------------------------------------------------------------------
# CONFIGURATION
# ---------------------------------------------------------------------------


def load_config_json(config_path, quiet=False):
    """
    Loads and validates a JSON configuration file.

    Args:
        config_path (str): Path to the JSON configuration file.
        quiet (bool): If True, suppress print statements

    Returns:
        dict: Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        json.JSONDecodeError: If the JSON is malformed.
        ValidationError: If the JSON doesn't match the required schema.
    """
    if not quiet:
        print(f"Loading configuration from {config_path}...")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        config = json.load(f)

    validate(config, CONFIG_SCHEMA)

    if not quiet:
        print(f"Successfully loaded config with {len(config['scan_history'])} scans")
    return config


def extract_data_from_config(config):
    """
    Converts a validated config into engine objects.

    Args:
        config (dict): Validated configuration dictionary

    Returns:
        tuple: (profile, user_info, behavior, target_weight_kg or None)

    Raises:
        ConfigurationError: If scan records or enum values are invalid
    """
    user_info = config["user_info"].copy()
    behavior = config.get("behavior", {}).copy()

    try:
        profile = convert_dict_to_profile(user_info, config["scan_history"])
    except ValueError as e:
        raise ConfigurationError(f"Invalid scan history: {e}") from e

    return profile, user_info, behavior, config.get("target_weight_kg")


# ---------------------------------------------------------------------------
# DATA PROCESSING AND ORCHESTRATION
# ---------------------------------------------------------------------------


def create_scan_pair_dataframe(scan_pairs):
    """
    Tabulates scan pair analyses.

    Args:
        scan_pairs (list): ScanPairAnalysis objects

    Returns:
        pd.DataFrame: One row per pair, valid and invalid
    """
    columns = [
        "start_date",
        "end_date",
        "duration_days",
        "weight_change",
        "fat_change",
        "lean_change",
        "calculated_p_ratio",
        "is_valid",
        "invalid_reason",
    ]
    rows = [
        {
            "start_date": pair.start_scan.scan_date.strftime("%Y-%m-%d"),
            "end_date": pair.end_scan.scan_date.strftime("%Y-%m-%d"),
            "duration_days": pair.duration_days,
            "weight_change": pair.weight_change,
            "fat_change": pair.fat_change,
            "lean_change": pair.lean_change,
            "calculated_p_ratio": pair.calculated_p_ratio,
            "is_valid": pair.is_valid,
            "invalid_reason": pair.invalid_reason or "",
        }
        for pair in scan_pairs
    ]
    return pd.DataFrame(rows, columns=columns)


def analyze_profile(profile, user_info, behavior, target_weight=None):
    """
    Runs calibration, the factor model and the prediction for one profile.

    Args:
        profile (UserBodyCompProfile): Profile with scan history
        user_info (dict): User info section of the config
        behavior (dict): Behavioural averages section of the config
        target_weight (float): Target weight in kg, defaults to 5 kg below the
            latest scan

    Returns:
        dict: calibration, profile, inputs, factors, prediction, scenarios,
            recommendations, df_pairs, time_to_target and projection_date
    """
    latest_scan = profile.scans[-1]

    calibration = calibrate_p_ratio_from_scans(profile.scans)
    if calibration is not None:
        profile = dataclasses.replace(
            profile,
            learned_p_ratio=calibration.learned_p_ratio,
            p_ratio_confidence=calibration.confidence,
            p_ratio_data_points=calibration.data_points,
        )
        scan_pairs = calibration.scan_pairs
        personal_history = tuple(
            pair.calculated_p_ratio for pair in scan_pairs if pair.is_valid
        )
    else:
        logger.info("Insufficient scan data for calibration, using population model")
        scan_pairs = analyze_scan_history(profile.scans)
        personal_history = ()

    inputs = convert_dict_to_inputs(
        behavior, user_info, latest_scan, personal_history
    )
    factors = PartitionRatioCalculator().calculate(inputs)

    if target_weight is None:
        target_weight = latest_scan.total_mass_kg + DEFAULT_TARGET_CHANGE_KG

    time_to_target = None
    projection_date = None
    if inputs.avg_daily_deficit_kcal > 0:
        time_to_target = estimate_time_to_target(
            latest_scan.total_mass_kg, target_weight, inputs.avg_daily_deficit_kcal
        )
        projection_date = calculate_projection_date(
            latest_scan.total_mass_kg, target_weight, inputs.avg_daily_deficit_kcal
        )

    prediction = CompositionPredictor().predict(
        latest_scan,
        target_weight,
        factors,
        profile,
        inputs=inputs,
        target_date=projection_date,
    )

    gain_projection = None
    if target_weight > latest_scan.total_mass_kg:
        gain_projection = predict_weight_gain(
            latest_scan, target_weight, inputs, height_cm=user_info.get("height_cm")
        )

    return {
        "calibration": calibration,
        "profile": profile,
        "inputs": inputs,
        "factors": factors,
        "prediction": prediction,
        "breakdown": explain_weight_loss_breakdown(prediction, latest_scan),
        "scenarios": generate_weight_scenarios(latest_scan, factors, profile),
        "recommendations": generate_recommendations(factors, inputs),
        "improvement": estimate_improvement_potential(factors),
        "df_pairs": create_scan_pair_dataframe(scan_pairs),
        "time_to_target": time_to_target,
        "projection_date": projection_date,
        "gain_projection": gain_projection,
    }


# ---------------------------------------------------------------------------
# TABLES AND PLOTTING
# ---------------------------------------------------------------------------


def format_prediction_table(prediction):
    """Renders the three-scenario prediction as a pipe table"""
    rows = []
    for label, band in [
        ("Fat mass (kg)", prediction.fat_mass_kg),
        ("Lean mass (kg)", prediction.lean_mass_kg),
        ("Body fat (%)", prediction.body_fat_percent),
    ]:
        rows.append(
            [
                label,
                f"{band.optimistic:.1f}",
                f"{band.expected:.1f}",
                f"{band.pessimistic:.1f}",
            ]
        )
    return tabulate(
        rows,
        headers=["Metric", "Optimistic", "Expected", "Pessimistic"],
        tablefmt="pipe",
        disable_numparse=True,
    )


def format_scan_pair_table(df_pairs):
    if df_pairs.empty:
        return "No scan pairs yet (need at least 2 scans)"

    df_display = df_pairs.copy()
    for col in ["weight_change", "fat_change", "lean_change"]:
        df_display[col] = df_display[col].apply(lambda x: f"{x:+.1f}")
    df_display["calculated_p_ratio"] = df_display["calculated_p_ratio"].apply(
        lambda x: f"{x:.2f}"
    )
    df_display.columns = [
        "Start",
        "End",
        "Days",
        "Weight",
        "Fat",
        "Lean",
        "P-ratio",
        "Valid",
        "Reason",
    ]
    return tabulate(
        df_display,
        headers="keys",
        tablefmt="pipe",
        showindex=False,
        disable_numparse=True,
    )


def create_projection_plot(latest_scan, scenarios, return_figure=False, output_dir="."):
    """
    Plots projected body fat percentage across target weights.

    Args:
        latest_scan (ScanRecord): Starting scan
        scenarios (list): Predictions from generate_weight_scenarios
        return_figure (bool): If True, returns the figure instead of saving
        output_dir (str): Directory for the saved plot

    Returns:
        matplotlib.figure.Figure or None
    """
    fig, ax = plt.subplots(figsize=(12, 8))

    weights = np.array(
        [latest_scan.total_mass_kg] + [p.target_weight_kg for p in scenarios]
    )
    start_bf = latest_scan.body_fat_percent
    optimistic = np.array(
        [start_bf] + [p.body_fat_percent.optimistic for p in scenarios]
    )
    expected = np.array([start_bf] + [p.body_fat_percent.expected for p in scenarios])
    pessimistic = np.array(
        [start_bf] + [p.body_fat_percent.pessimistic for p in scenarios]
    )

    ax.fill_between(
        weights,
        optimistic,
        pessimistic,
        color="lightblue",
        alpha=0.4,
        label="Optimistic-Pessimistic Range",
    )
    ax.plot(
        weights,
        expected,
        color="navy",
        linewidth=3,
        marker="o",
        markersize=8,
        label="Expected",
        zorder=10,
    )

    for weight, bf in zip(weights, expected):
        ax.annotate(
            f"{bf:.1f}%",
            (weight, bf),
            textcoords="offset points",
            xytext=(0, 10),
            ha="center",
            fontsize=10,
            fontweight="bold",
            color="navy",
        )

    ax.set_xlabel("Target Weight (kg)", fontsize=12)
    ax.set_ylabel("Body Fat Percentage (%)", fontsize=12)
    ax.set_title("Projected Body Fat by Target Weight", fontsize=14, fontweight="bold")
    ax.invert_xaxis()
    ax.legend(loc="upper right")
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if return_figure:
        return fig

    filename = os.path.join(output_dir, PLOT_FILENAME)
    plt.savefig(filename, dpi=150, bbox_inches="tight")
    plt.close(fig)
    print(f"Projection plot saved as: {filename}")
    return None


def print_analysis(results):
    profile = results["profile"]
    calibration = results["calibration"]
    factors = results["factors"]
    prediction = results["prediction"]

    print("\n--- Scan Pairs ---")
    print(format_scan_pair_table(results["df_pairs"]))

    print("\n--- Calibration ---")
    if calibration is None:
        print("  - Not enough valid scan pairs, using research averages")
    else:
        print(f"  - Learned P-ratio: {calibration.learned_p_ratio:.2f}")
        print(f"  - Confidence: {calibration.confidence.value}")
        print(f"  - Valid pairs: {calibration.data_points}")

    print("\n--- Factor Model ---")
    print(f"  - Model P-ratio: {factors.final_p_ratio:.2f}")
    print(
        f"  - Range: {factors.confidence_range[0]:.2f}-{factors.confidence_range[1]:.2f}"
    )
    print(f"  - {get_p_ratio_description(factors.final_p_ratio)}")

    print(f"\n--- Prediction at {prediction.target_weight_kg:.1f} kg ---")
    print(format_prediction_table(prediction))
    print(f"Confidence: {prediction.confidence_level.value}")
    for message in prediction.confidence_factors:
        print(f"  - {message}")

    breakdown = results["breakdown"]
    print(
        f"Expected change: {-breakdown.expected.fat_loss:+.1f} kg fat, "
        f"{-breakdown.expected.lean_loss:+.1f} kg lean "
        f"(best case {-breakdown.best_case.lean_loss:+.1f} kg lean, "
        f"worst case {-breakdown.worst_case.lean_loss:+.1f} kg lean)"
    )

    gain = results["gain_projection"]
    if gain is not None:
        print(
            f"\nSurplus phase: expected lean share of gain {gain.lean_gain_ratio:.0%}, "
            f"body fat {gain.body_fat_percent.expected:.1f}% "
            f"({gain.body_fat_percent.optimistic:.1f}-"
            f"{gain.body_fat_percent.pessimistic:.1f}%)"
        )
        if gain.normalized_ffmi is not None:
            print(f"Expected normalized FFMI: {gain.normalized_ffmi.expected:.1f}")

    time_to_target = results["time_to_target"]
    if time_to_target is not None:
        print(
            f"Estimated time: {time_to_target.weeks} weeks {time_to_target.days} days "
            f"(around {results['projection_date']:%Y-%m-%d})"
        )

    print("\n--- Recommendations ---")
    if not results["recommendations"]:
        print("  - Your current approach is well-optimized for body composition.")
    for rec in results["recommendations"]:
        print(f"  [{rec.priority.value}] {rec.title}: {rec.description}")

    improvement = results["improvement"]
    if improvement.improvement_percent > 0:
        print(
            f"\nOptimizing protein, training and deficit could raise your P-ratio "
            f"from {improvement.current_p_ratio:.2f} to "
            f"{improvement.potential_p_ratio:.2f}"
        )

    logger.debug(f"Printed analysis for {profile.user_id}")


def run_analysis(
    config_path="example_config.json",
    target_weight=None,
    target_weeks=None,
    output_dir=".",
    return_results=False,
):
    """
    Main analysis function that orchestrates the P-ratio workflow.

    Args:
        config_path (str): Path to JSON configuration file
        target_weight (float): Overrides the config's target weight
        target_weeks (float): If set, reports the deficit needed to reach the
            target in this many weeks
        output_dir (str): Directory for the CSV export and plot
        return_results (bool): If True, returns results instead of printing
            and saving

    Returns:
        int or tuple: Exit code (0 for success, 1 for error) if
            return_results=False, or (df_pairs, calibration, prediction, figure)
            if return_results=True
    """
    if not return_results:
        print("P-Ratio Body Composition Prediction")
        print("=" * 40)

    try:
        config = load_config_json(config_path, quiet=return_results)
        profile, user_info, behavior, config_target = extract_data_from_config(
            config
        )
        if target_weight is None:
            target_weight = config_target

        results = analyze_profile(profile, user_info, behavior, target_weight)

        if return_results:
            figure = create_projection_plot(
                profile.scans[-1], results["scenarios"], return_figure=True
            )
            return (
                results["df_pairs"],
                results["calibration"],
                results["prediction"],
                figure,
            )

        print_analysis(results)

        if target_weeks is not None:
            required = calculate_required_deficit(
                profile.scans[-1].total_mass_kg,
                results["prediction"].target_weight_kg,
                target_weeks,
            )
            print(f"\nRequired deficit for {target_weeks:g} weeks: {required} kcal/day")

        csv_path = os.path.join(output_dir, PAIRS_CSV_FILENAME)
        results["df_pairs"].to_csv(csv_path, index=False)
        print(f"\nScan pair table saved as: {csv_path}")
        create_projection_plot(
            profile.scans[-1], results["scenarios"], output_dir=output_dir
        )
        return 0

    except (
        FileNotFoundError,
        json.JSONDecodeError,
        ValidationError,
        ConfigurationError,
        KeyError,
        ValueError,
    ) as e:
        if return_results:
            raise
        print(f"Error: {e}")
        print(f"\nPlease check your configuration file: {config_path}")
        return 1
