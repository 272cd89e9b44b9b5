#!/usr/bin/env python3
"""
P-Ratio Engine - Main CLI Script

Command-line entry point for body composition prediction. Parses arguments,
shows help for the configuration format and delegates the analysis to the
core module.
"""

import argparse
import os

from core import PAIRS_CSV_FILENAME, PLOT_FILENAME, run_analysis


def main():
    """Main CLI function with comprehensive argument parsing."""
    parser = argparse.ArgumentParser(
        description="Predict fat vs lean mass change, calibrated from your DEXA scans",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_analysis.py                           # Use example_config.json
  python run_analysis.py my_config.json            # Use custom config
  python run_analysis.py --config my_config.json   # Alternative syntax
  python run_analysis.py -t 80 --weeks 12          # Target 80 kg in 12 weeks

Run with --help-config to see the JSON config format.
        """,
    )

    parser.add_argument(
        "config_file",
        nargs="?",
        default="example_config.json",
        help="Path to JSON configuration file (default: example_config.json)",
    )

    parser.add_argument(
        "--config",
        "-c",
        dest="config_file_alt",
        help="Alternative way to specify config file path",
    )

    parser.add_argument(
        "--target-weight",
        "-t",
        type=float,
        default=None,
        help="Target weight in kg (default: config value, or 5 kg below latest scan)",
    )

    parser.add_argument(
        "--weeks",
        "-w",
        type=float,
        default=None,
        help="Report the daily deficit needed to reach the target in this many weeks",
    )

    parser.add_argument(
        "--output-dir",
        "-o",
        default=".",
        help="Directory for scan_pairs.csv and projection_plot.png (default: .)",
    )

    parser.add_argument(
        "--help-config",
        action="store_true",
        help="Show detailed help about the JSON configuration format",
    )

    args = parser.parse_args()

    if args.help_config:
        show_config_help()
        return 0

    if args.target_weight is not None and args.target_weight <= 0:
        print(f"Error: --target-weight must be positive, got {args.target_weight}")
        return 1

    config_file = args.config_file_alt if args.config_file_alt else args.config_file

    if not os.path.exists(config_file):
        print(f"Error: Configuration file not found: {config_file}")
        print()
        print("Please check the file path and try again.")
        print("Run with --help-config to see the expected JSON format.")
        return 1

    try:
        exit_code = run_analysis(
            config_path=config_file,
            target_weight=args.target_weight,
            target_weeks=args.weeks,
            output_dir=args.output_dir,
        )

        if exit_code == 0:
            print()
            print("Analysis completed successfully!")
            print("Generated files:")
            pairs_path = os.path.join(args.output_dir, PAIRS_CSV_FILENAME)
            plot_path = os.path.join(args.output_dir, PLOT_FILENAME)
            print(f"  - {pairs_path}  (Scan pair calibration table)")
            print(f"  - {plot_path}  (Projected body fat by target weight)")

        return exit_code

    except KeyboardInterrupt:
        print("\nAnalysis interrupted by user.")
        return 1


def show_config_help():
    """Show detailed help about the JSON configuration format."""
    help_text = """
JSON Configuration Format
=========================

{
  "user_info": {
    "user_id": "<optional id>",
    "biological_sex": "<male|female|m|f>",
    "training_age": "<beginner|intermediate|advanced>",   // optional
    "is_enhanced": false,                                 // optional
    "height_cm": 178                                      // optional, for FFMI
  },
  "scan_history": [
    {
      "date": "YYYY-MM-DD",          // or MM/DD/YYYY
      "total_mass_kg": 90.0,
      "fat_mass_kg": 27.0,           // or "body_fat_percent": 30.0
      "lean_mass_kg": 60.0,          // optional, derived when missing
      "bone_mineral_kg": 3.0,        // optional
      "provider": "BodySpec",        // optional
      "conditions": {                // optional
        "time_of_day": "morning_fasted",
        "hydration_status": "normal",
        "recent_workout": false,
        "same_provider_as_previous": true
      }
    }
  ],
  "behavior": {                      // optional, recent 7-14 day averages
    "avg_daily_protein_grams": 180,
    "avg_daily_protein_per_kg": 2.0, // optional, derived from latest scan
    "avg_weekly_training_sets": 16,
    "avg_daily_deficit_kcal": 500,
    "deficit_percent": 18
  },
  "target_weight_kg": 82.0           // optional
}

Notes:
- All masses are in kilograms
- At least 2 scans at least 14 days apart with 1+ kg weight change are
  needed to calibrate a personal P-ratio; otherwise research averages are used
- Missing lean mass is derived as total - fat - bone
    """
    print(help_text)


if __name__ == "__main__":
    exit(main())
