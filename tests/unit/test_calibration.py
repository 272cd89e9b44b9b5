"""
Test suite for DEXA calibration.

Scan histories are built from explicit (day, total, fat, lean) tuples so the
observed ratio of each pair is easy to read off: fat change / weight change.
"""

import dataclasses
import random
import unittest
from datetime import datetime, timedelta

from calibration import (
    ScanCalibrator,
    analyze_scan_history,
    analyze_scan_pair,
    calibrate_p_ratio_from_scans,
    classify_confidence,
    compare_prediction_vs_actual,
    explain_p_ratio_result,
    format_p_ratio_as_percentage,
    get_body_comp_change_summary,
    process_new_scan,
    scans_needed_for_confidence,
)
from prediction import create_empty_profile, predict_body_composition
from shared_models import (
    CalibrationConfidence,
    PartitionRatioFactors,
    PRatioQuality,
    ScanRecord,
)

START_DATE = datetime(2024, 1, 1)


def make_scan(day, total, fat, lean) -> ScanRecord:
    return ScanRecord(
        scan_date=START_DATE + timedelta(days=day),
        total_mass_kg=total,
        fat_mass_kg=fat,
        lean_mass_kg=lean,
    )


def make_history(rows):
    return [make_scan(*row) for row in rows]


# Observed ratios 0.75, 0.82 and 0.90
THREE_PAIR_HISTORY = [
    (0, 100.0, 30.0, 66.0),
    (30, 96.0, 27.0, 65.0),
    (60, 92.0, 23.72, 64.28),
    (90, 88.0, 20.12, 63.88),
]

# Observed ratios 0.80, 0.82, 0.78, 0.81
CONSISTENT_HISTORY = [
    (0, 100.0, 30.0, 66.0),
    (30, 96.0, 26.8, 65.2),
    (60, 92.0, 23.52, 64.48),
    (90, 88.0, 20.4, 63.6),
    (120, 84.0, 17.16, 62.84),
]


class TestAnalyzeScanPair(unittest.TestCase):
    def test_valid_pair(self):
        analysis = analyze_scan_pair(
            make_scan(0, 90.0, 27.0, 60.0), make_scan(30, 85.0, 23.0, 59.5)
        )
        self.assertTrue(analysis.is_valid)
        self.assertIsNone(analysis.invalid_reason)
        self.assertAlmostEqual(analysis.weight_change, -5.0)
        self.assertAlmostEqual(analysis.fat_change, -4.0)
        self.assertAlmostEqual(analysis.lean_change, -0.5)
        self.assertAlmostEqual(analysis.calculated_p_ratio, 0.8)
        self.assertEqual(analysis.duration_days, 30)

    def test_weight_change_too_small(self):
        analysis = analyze_scan_pair(
            make_scan(0, 90.0, 27.0, 60.0), make_scan(30, 89.5, 26.6, 59.9)
        )
        self.assertFalse(analysis.is_valid)
        self.assertIn("too small", analysis.invalid_reason)
        self.assertEqual(analysis.calculated_p_ratio, 0.0)

    def test_scans_too_close(self):
        analysis = analyze_scan_pair(
            make_scan(0, 90.0, 27.0, 60.0), make_scan(10, 85.0, 23.0, 59.0)
        )
        self.assertFalse(analysis.is_valid)
        self.assertIn("too close", analysis.invalid_reason)
        self.assertAlmostEqual(analysis.calculated_p_ratio, 0.8)

    def test_ratio_below_range(self):
        analysis = analyze_scan_pair(
            make_scan(0, 90.0, 27.0, 60.0), make_scan(30, 85.0, 26.5, 55.5)
        )
        self.assertFalse(analysis.is_valid)
        self.assertEqual(
            analysis.invalid_reason, "Calculated P-ratio (0.10) outside expected range"
        )

    def test_ratio_above_range(self):
        analysis = analyze_scan_pair(
            make_scan(0, 90.0, 27.0, 60.0), make_scan(30, 85.0, 21.0, 61.0)
        )
        self.assertFalse(analysis.is_valid)
        self.assertIn("(1.20)", analysis.invalid_reason)

    def test_recomposition_ratio_is_valid(self):
        # Fat lost exceeds weight lost, lean mass went up
        analysis = analyze_scan_pair(
            make_scan(0, 90.0, 27.0, 60.0), make_scan(30, 85.0, 21.75, 60.25)
        )
        self.assertTrue(analysis.is_valid)
        self.assertAlmostEqual(analysis.calculated_p_ratio, 1.05)

    def test_last_failing_check_supplies_reason(self):
        analysis = analyze_scan_pair(
            make_scan(0, 90.0, 27.0, 60.0), make_scan(5, 89.8, 26.9, 59.9)
        )
        self.assertFalse(analysis.is_valid)
        self.assertIn("too close", analysis.invalid_reason)

    def test_history_is_sorted_before_pairing(self):
        scans = make_history(THREE_PAIR_HISTORY)
        pairs = analyze_scan_history(list(reversed(scans)))
        self.assertEqual(len(pairs), 3)
        for pair in pairs:
            self.assertLess(pair.start_scan.scan_date, pair.end_scan.scan_date)


class TestCalibrate(unittest.TestCase):
    def test_needs_two_scans(self):
        self.assertIsNone(calibrate_p_ratio_from_scans([]))
        self.assertIsNone(
            calibrate_p_ratio_from_scans([make_scan(0, 90.0, 27.0, 60.0)])
        )

    def test_no_valid_pairs(self):
        scans = [make_scan(0, 90.0, 27.0, 60.0), make_scan(30, 89.5, 26.6, 59.9)]
        self.assertIsNone(calibrate_p_ratio_from_scans(scans))

    def test_median_of_valid_ratios(self):
        result = calibrate_p_ratio_from_scans(make_history(THREE_PAIR_HISTORY))
        self.assertAlmostEqual(result.learned_p_ratio, 0.82)
        self.assertEqual(result.data_points, 3)
        self.assertEqual(len(result.scan_pairs), 3)
        # Sample std dev of 0.75, 0.82, 0.90 is ~0.075
        self.assertEqual(result.confidence, CalibrationConfidence.MEDIUM)

    def test_consistent_history_is_high(self):
        result = calibrate_p_ratio_from_scans(make_history(CONSISTENT_HISTORY))
        self.assertEqual(result.data_points, 4)
        self.assertAlmostEqual(result.learned_p_ratio, 0.805)
        self.assertEqual(result.confidence, CalibrationConfidence.HIGH)

    def test_single_pair_is_low(self):
        scans = [make_scan(0, 90.0, 27.0, 60.0), make_scan(30, 85.0, 23.0, 59.5)]
        result = calibrate_p_ratio_from_scans(scans)
        self.assertAlmostEqual(result.learned_p_ratio, 0.8)
        self.assertEqual(result.confidence, CalibrationConfidence.LOW)
        self.assertEqual(result.data_points, 1)

    def test_invalid_pairs_excluded_from_median(self):
        scans = make_history(
            [
                (0, 100.0, 30.0, 66.0),
                (30, 95.0, 26.0, 65.0),  # 0.80
                (60, 94.6, 25.8, 64.8),  # too small
                (90, 89.6, 21.3, 64.3),  # 0.90
            ]
        )
        result = calibrate_p_ratio_from_scans(scans)
        self.assertEqual(len(result.scan_pairs), 3)
        self.assertEqual(result.data_points, 2)
        self.assertAlmostEqual(result.learned_p_ratio, 0.85)

    def test_order_independent(self):
        scans = make_history(THREE_PAIR_HISTORY)
        shuffled = list(scans)
        random.Random(7).shuffle(shuffled)
        self.assertEqual(
            calibrate_p_ratio_from_scans(scans), calibrate_p_ratio_from_scans(shuffled)
        )

    def test_same_date_scans_order_independent(self):
        first = make_scan(0, 100.0, 30.0, 66.0)
        later_heavy = make_scan(30, 96.0, 27.0, 65.0)
        later_light = make_scan(30, 95.0, 26.0, 65.0)

        result = calibrate_p_ratio_from_scans([first, later_heavy, later_light])
        self.assertEqual(
            result, calibrate_p_ratio_from_scans([first, later_light, later_heavy])
        )
        # Lighter same-day scan sorts first; the zero-day pair after it is invalid
        self.assertEqual(result.data_points, 1)
        self.assertAlmostEqual(result.learned_p_ratio, 0.8)
        self.assertEqual(
            [pair.end_scan for pair in result.scan_pairs], [later_light, later_heavy]
        )

    def test_deterministic(self):
        scans = make_history(CONSISTENT_HISTORY)
        self.assertEqual(
            calibrate_p_ratio_from_scans(scans), calibrate_p_ratio_from_scans(scans)
        )

    def test_calibrator_object_delegates(self):
        scans = make_history(THREE_PAIR_HISTORY)
        calibrator = ScanCalibrator()
        self.assertEqual(calibrator.calibrate(scans), calibrate_p_ratio_from_scans(scans))
        self.assertEqual(
            calibrator.analyze_pair(scans[0], scans[1]),
            analyze_scan_pair(scans[0], scans[1]),
        )


class TestClassifyConfidence(unittest.TestCase):
    def test_empty_is_none(self):
        self.assertEqual(classify_confidence([]), CalibrationConfidence.NONE)

    def test_noisy_pair_is_low(self):
        self.assertEqual(classify_confidence([0.5, 0.9]), CalibrationConfidence.LOW)

    def test_agreeing_pair_is_medium(self):
        self.assertEqual(classify_confidence([0.8, 0.82]), CalibrationConfidence.MEDIUM)

    def test_four_noisy_ratios_are_medium(self):
        # Std dev ~0.1: too noisy for HIGH
        self.assertEqual(
            classify_confidence([0.7, 0.8, 0.9, 0.8]), CalibrationConfidence.MEDIUM
        )


class TestSummaryAndComparison(unittest.TestCase):
    def setUp(self):
        self.start = make_scan(0, 90.0, 27.0, 60.0)
        self.end = make_scan(60, 85.0, 23.0, 59.5)

    def test_change_summary_matches_pair_analysis(self):
        summary = get_body_comp_change_summary(self.start, self.end)
        analysis = analyze_scan_pair(self.start, self.end)
        self.assertEqual(summary.calculated_p_ratio, analysis.calculated_p_ratio)
        self.assertEqual(summary.weight_change, analysis.weight_change)
        self.assertAlmostEqual(summary.body_fat_change, 23.0 / 85 * 100 - 30.0)
        self.assertEqual(summary.p_ratio_quality, PRatioQuality.GOOD)
        self.assertEqual(summary.start_date, self.start.scan_date)
        self.assertEqual(summary.end_date, self.end.scan_date)

    def _predict(self):
        factors = PartitionRatioFactors(
            base_ratio=0.8,
            protein_factor=1.0,
            training_factor=1.0,
            deficit_factor=1.0,
            body_fat_factor=1.0,
            age_factor=1.0,
            enhanced_factor=1.0,
            final_p_ratio=0.8,
            confidence_range=(0.68, 0.92),
        )
        profile = create_empty_profile("user-1", now=START_DATE)
        return predict_body_composition(self.start, 85.0, factors, profile)

    def test_accurate_prediction(self):
        prediction = self._predict()
        log = compare_prediction_vs_actual(
            prediction, self.end, self.start, user_id="user-1"
        )
        self.assertAlmostEqual(log.body_fat_error, 0.0)
        self.assertAlmostEqual(log.fat_mass_error, 0.0)
        self.assertAlmostEqual(log.lean_mass_error, 0.5)
        self.assertTrue(log.within_range)
        self.assertAlmostEqual(log.actual_p_ratio, 0.8)
        self.assertEqual(log.predicted_p_ratio, 0.8)
        self.assertEqual(log.user_id, "user-1")
        self.assertEqual(log.actual_date, self.end.scan_date)

    def test_outside_range(self):
        prediction = self._predict()
        actual = make_scan(60, 85.0, 26.0, 56.0)
        log = compare_prediction_vs_actual(prediction, actual, self.start)
        self.assertFalse(log.within_range)
        self.assertGreater(log.body_fat_error, 0)

    def test_range_is_inclusive(self):
        prediction = self._predict()
        fat = prediction.fat_mass_kg.pessimistic
        actual = make_scan(60, 85.0, fat, 85.0 - fat - 3.0)
        log = compare_prediction_vs_actual(prediction, actual, self.start)
        self.assertTrue(log.within_range)


class TestProcessNewScan(unittest.TestCase):
    def setUp(self):
        self.first = make_scan(0, 90.0, 27.0, 60.0)
        self.now = datetime(2024, 6, 1)
        profile = create_empty_profile("user-1", now=START_DATE)
        self.profile = dataclasses.replace(profile, scans=[self.first])

    def test_recalibrates(self):
        updated = process_new_scan(
            self.profile, make_scan(30, 85.0, 23.0, 59.5), now=self.now
        )
        self.assertEqual(len(updated.scans), 2)
        self.assertAlmostEqual(updated.learned_p_ratio, 0.8)
        self.assertEqual(updated.p_ratio_confidence, CalibrationConfidence.LOW)
        self.assertEqual(updated.p_ratio_data_points, 1)
        self.assertEqual(updated.last_updated, self.now)

    def test_input_profile_unchanged(self):
        process_new_scan(self.profile, make_scan(30, 85.0, 23.0, 59.5), now=self.now)
        self.assertEqual(len(self.profile.scans), 1)
        self.assertIsNone(self.profile.learned_p_ratio)
        self.assertEqual(self.profile.last_updated, START_DATE)

    def test_failed_calibration_keeps_previous_values(self):
        profile = dataclasses.replace(
            self.profile,
            learned_p_ratio=0.75,
            p_ratio_confidence=CalibrationConfidence.LOW,
            p_ratio_data_points=1,
        )
        updated = process_new_scan(
            profile, make_scan(30, 89.5, 26.6, 59.9), now=self.now
        )
        self.assertEqual(len(updated.scans), 2)
        self.assertEqual(updated.learned_p_ratio, 0.75)
        self.assertEqual(updated.p_ratio_data_points, 1)
        self.assertEqual(updated.last_updated, self.now)

    def test_out_of_order_scan_is_sorted_in(self):
        earlier = make_scan(-30, 95.0, 31.0, 61.0)
        updated = process_new_scan(self.profile, earlier, now=self.now)
        self.assertEqual(updated.scans[0], earlier)

    def test_confidence_downgrade_is_logged(self):
        profile = dataclasses.replace(
            self.profile, p_ratio_confidence=CalibrationConfidence.HIGH
        )
        with self.assertLogs("calibration", level="WARNING"):
            updated = process_new_scan(
                profile, make_scan(30, 85.0, 23.0, 59.5), now=self.now
            )
        self.assertEqual(updated.p_ratio_confidence, CalibrationConfidence.LOW)

    def test_calibrator_object(self):
        updated = ScanCalibrator().process_new_scan(
            self.profile, make_scan(30, 85.0, 23.0, 59.5), now=self.now
        )
        self.assertAlmostEqual(updated.learned_p_ratio, 0.8)


class TestScansNeeded(unittest.TestCase):
    def test_examples(self):
        cases = [
            (1, CalibrationConfidence.LOW, CalibrationConfidence.HIGH, 3),
            (4, CalibrationConfidence.HIGH, CalibrationConfidence.MEDIUM, 0),
            (0, CalibrationConfidence.NONE, CalibrationConfidence.MEDIUM, 2),
            (2, CalibrationConfidence.MEDIUM, CalibrationConfidence.HIGH, 2),
            (5, CalibrationConfidence.MEDIUM, CalibrationConfidence.HIGH, 1),
            (3, CalibrationConfidence.LOW, CalibrationConfidence.MEDIUM, 1),
            (3, CalibrationConfidence.LOW, CalibrationConfidence.LOW, 0),
        ]
        for data_points, current, target, expected in cases:
            with self.subTest(data_points=data_points, current=current, target=target):
                self.assertEqual(
                    scans_needed_for_confidence(data_points, current, target), expected
                )


class TestFormatting(unittest.TestCase):
    def test_percentage(self):
        self.assertEqual(format_p_ratio_as_percentage(0.8), "80% of loss was fat")
        self.assertEqual(format_p_ratio_as_percentage(0.736), "74% of loss was fat")

    def test_explanations(self):
        self.assertTrue(explain_p_ratio_result(0.9).startswith("Excellent"))
        self.assertTrue(explain_p_ratio_result(0.8).startswith("Good"))
        self.assertTrue(explain_p_ratio_result(0.7).startswith("Fair"))
        self.assertTrue(explain_p_ratio_result(0.5).startswith("More muscle"))


if __name__ == "__main__":
    unittest.main()
