"""
DEXA Calibration

Learns a user's personal P-ratio from their own scan history. Each pair of
chronologically consecutive scans yields one observed ratio
(fat change / weight change); pairs that are too close together, show too
little weight change or produce an implausible ratio are rejected with a
reason. The learned ratio is the median of the surviving observations so a
single scan distorted by water-weight swings cannot drag it.

Confidence ladder (recomputed on every run, no time decay):
    none -> low -> medium -> high
"""

import dataclasses
import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import numpy as np

from p_ratio import get_p_ratio_quality
from shared_models import (
    CALIBRATION_CONFIDENCE_GATES,
    EMPIRICAL_RATIO_BOUNDS,
    MIN_SCAN_INTERVAL_DAYS,
    MIN_WEIGHT_CHANGE_KG,
    BodyCompChangeSummary,
    CalibrationConfidence,
    CalibrationResult,
    Prediction,
    PredictionAccuracyLog,
    PRatioQuality,
    ScanPairAnalysis,
    ScanRecord,
    UserBodyCompProfile,
    scan_sort_key,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 60 * 60 * 24

# Total valid pairs needed to reach a confidence level
DATA_POINTS_FOR_CONFIDENCE = {
    CalibrationConfidence.MEDIUM: 2,
    CalibrationConfidence.HIGH: 4,
}


def sort_scans(scans: Sequence[ScanRecord]) -> Tuple[ScanRecord, ...]:
    return tuple(sorted(scans, key=scan_sort_key))


def analyze_scan_pair(start_scan: ScanRecord, end_scan: ScanRecord) -> ScanPairAnalysis:
    """
    Analyze a pair of consecutive scans.

    The ratio is only computed when the weight change reaches
    MIN_WEIGHT_CHANGE_KG and is 0 otherwise. When several checks fail, the
    reason reported is the last one checked.
    """
    weight_change = end_scan.total_mass_kg - start_scan.total_mass_kg
    fat_change = end_scan.fat_mass_kg - start_scan.fat_mass_kg
    lean_change = end_scan.lean_mass_kg - start_scan.lean_mass_kg

    elapsed = end_scan.scan_date - start_scan.scan_date
    duration_days = int(round(elapsed.total_seconds() / SECONDS_PER_DAY))

    is_valid = True
    invalid_reason = None

    if abs(weight_change) < MIN_WEIGHT_CHANGE_KG:
        is_valid = False
        invalid_reason = "Weight change too small for reliable P-ratio calculation"

    if duration_days < MIN_SCAN_INTERVAL_DAYS:
        is_valid = False
        invalid_reason = "Scans too close together for reliable measurement"

    calculated_p_ratio = 0.0
    if abs(weight_change) >= MIN_WEIGHT_CHANGE_KG:
        calculated_p_ratio = fat_change / weight_change

        low, high = EMPIRICAL_RATIO_BOUNDS
        if calculated_p_ratio < low or calculated_p_ratio > high:
            is_valid = False
            invalid_reason = (
                f"Calculated P-ratio ({calculated_p_ratio:.2f}) "
                f"outside expected range"
            )

    if not is_valid:
        logger.debug(
            f"Rejected scan pair {start_scan.scan_date:%Y-%m-%d} -> "
            f"{end_scan.scan_date:%Y-%m-%d}: {invalid_reason}"
        )

    return ScanPairAnalysis(
        start_scan=start_scan,
        end_scan=end_scan,
        weight_change=weight_change,
        fat_change=fat_change,
        lean_change=lean_change,
        calculated_p_ratio=calculated_p_ratio,
        duration_days=duration_days,
        is_valid=is_valid,
        invalid_reason=invalid_reason,
    )


def analyze_scan_history(scans: Sequence[ScanRecord]) -> List[ScanPairAnalysis]:
    """Analyze every consecutive pair of the date-sorted history"""
    ordered = sort_scans(scans)
    return [
        analyze_scan_pair(start, end) for start, end in zip(ordered, ordered[1:])
    ]


def classify_confidence(ratios: Sequence[float]) -> CalibrationConfidence:
    """
    Confidence from sample standard deviation and count of valid ratios.

    HIGH needs >= 4 ratios with std dev < 0.08, MEDIUM >= 2 with < 0.12.
    """
    if not ratios:
        return CalibrationConfidence.NONE

    std_dev = float(np.std(ratios, ddof=1)) if len(ratios) > 1 else 0.0

    for level in (CalibrationConfidence.HIGH, CalibrationConfidence.MEDIUM):
        min_count, max_std = CALIBRATION_CONFIDENCE_GATES[level]
        if len(ratios) >= min_count and std_dev < max_std:
            return level
    return CalibrationConfidence.LOW


def calibrate_p_ratio_from_scans(
    scans: Sequence[ScanRecord],
) -> Optional[CalibrationResult]:
    """
    Calibrate a personal P-ratio from a scan history.

    Args:
        scans: Scan history in any order

    Returns:
        CalibrationResult, or None when fewer than two scans or no valid pair
        is available (callers fall back to the factor model)
    """
    if len(scans) < 2:
        return None

    scan_pairs = analyze_scan_history(scans)
    valid_ratios = tuple(
        pair.calculated_p_ratio for pair in scan_pairs if pair.is_valid
    )

    if not valid_ratios:
        logger.info(f"No valid scan pairs among {len(scan_pairs)} pairs")
        return None

    learned_p_ratio = float(np.median(valid_ratios))
    confidence = classify_confidence(valid_ratios)

    logger.info(
        f"Calibrated P-ratio {learned_p_ratio:.3f} from {len(valid_ratios)} of "
        f"{len(scan_pairs)} scan pairs (confidence {confidence.value})"
    )

    return CalibrationResult(
        learned_p_ratio=learned_p_ratio,
        confidence=confidence,
        data_points=len(valid_ratios),
        scan_pairs=scan_pairs,
    )


class ScanCalibrator:
    """Object interface over the calibration functions"""

    def calibrate(self, scans: Sequence[ScanRecord]) -> Optional[CalibrationResult]:
        return calibrate_p_ratio_from_scans(scans)

    def analyze_pair(self, start_scan: ScanRecord, end_scan: ScanRecord):
        return analyze_scan_pair(start_scan, end_scan)

    def process_new_scan(
        self,
        profile: UserBodyCompProfile,
        new_scan: ScanRecord,
        now: Optional[datetime] = None,
    ) -> UserBodyCompProfile:
        return process_new_scan(profile, new_scan, now)


# ============================================================================
# SUPPORTING OPERATIONS
# ============================================================================


def get_body_comp_change_summary(
    start_scan: ScanRecord, end_scan: ScanRecord
) -> BodyCompChangeSummary:
    analysis = analyze_scan_pair(start_scan, end_scan)

    return BodyCompChangeSummary(
        start_date=start_scan.scan_date,
        end_date=end_scan.scan_date,
        weight_change=analysis.weight_change,
        fat_change=analysis.fat_change,
        lean_change=analysis.lean_change,
        body_fat_change=end_scan.body_fat_percent - start_scan.body_fat_percent,
        calculated_p_ratio=analysis.calculated_p_ratio,
        p_ratio_quality=get_p_ratio_quality(analysis.calculated_p_ratio),
    )


def compare_prediction_vs_actual(
    prediction: Prediction,
    actual_scan: ScanRecord,
    start_scan: ScanRecord,
    user_id: Optional[str] = None,
    prediction_date: Optional[datetime] = None,
) -> PredictionAccuracyLog:
    """
    Compare a prediction with the scan that followed it.

    Errors are signed (actual - predicted). The actual body fat is within
    range when it lies between the optimistic and pessimistic body fat
    percentages, inclusive.
    """
    actual_analysis = analyze_scan_pair(start_scan, actual_scan)

    band = prediction.body_fat_percent
    band_low = min(band.optimistic, band.pessimistic)
    band_high = max(band.optimistic, band.pessimistic)
    actual_body_fat = actual_scan.body_fat_percent
    within_range = band_low <= actual_body_fat <= band_high

    log = PredictionAccuracyLog(
        user_id=user_id,
        prediction_date=prediction_date,
        actual_date=actual_scan.scan_date,
        predicted_body_fat=prediction.predicted_body_fat_percent,
        predicted_lean_mass=prediction.predicted_lean_mass_kg,
        predicted_fat_mass=prediction.predicted_fat_mass_kg,
        actual_body_fat=actual_body_fat,
        actual_lean_mass=actual_scan.lean_mass_kg,
        actual_fat_mass=actual_scan.fat_mass_kg,
        body_fat_error=actual_body_fat - prediction.predicted_body_fat_percent,
        lean_mass_error=actual_scan.lean_mass_kg - prediction.predicted_lean_mass_kg,
        fat_mass_error=actual_scan.fat_mass_kg - prediction.predicted_fat_mass_kg,
        within_range=within_range,
        predicted_p_ratio=prediction.assumptions.p_ratio_used,
        actual_p_ratio=actual_analysis.calculated_p_ratio,
    )

    logger.info(
        f"Prediction vs actual: BF error {log.body_fat_error:+.1f}%, "
        f"within range: {within_range}"
    )
    return log


def process_new_scan(
    profile: UserBodyCompProfile,
    new_scan: ScanRecord,
    now: Optional[datetime] = None,
) -> UserBodyCompProfile:
    """
    Add a scan to a profile and recalibrate.

    Returns a new profile; the input profile is not modified. Calibration
    fields are only replaced when calibration succeeds.
    """
    if now is None:
        now = datetime.now()

    updated_scans = list(sort_scans([*profile.scans, new_scan]))
    calibration = calibrate_p_ratio_from_scans(updated_scans)

    if calibration is None:
        return dataclasses.replace(profile, scans=updated_scans, last_updated=now)

    if calibration.confidence < profile.p_ratio_confidence:
        logger.warning(
            f"P-ratio confidence for {profile.user_id} lowered from "
            f"{profile.p_ratio_confidence.value} to {calibration.confidence.value}"
        )

    return dataclasses.replace(
        profile,
        scans=updated_scans,
        learned_p_ratio=calibration.learned_p_ratio,
        p_ratio_confidence=calibration.confidence,
        p_ratio_data_points=calibration.data_points,
        last_updated=now,
    )


def scans_needed_for_confidence(
    current_data_points: int,
    current_confidence: CalibrationConfidence,
    target_confidence: CalibrationConfidence,
) -> int:
    """
    Estimate how many more valid scan pairs reach the target confidence.

    0 when the target is already met, otherwise the pairs missing from the
    count gate, or 1 when the count gate is already met.
    """
    if target_confidence <= current_confidence:
        return 0

    required = DATA_POINTS_FOR_CONFIDENCE.get(target_confidence)
    if required is not None and current_data_points < required:
        return required - current_data_points

    return 1


def format_p_ratio_as_percentage(p_ratio: float) -> str:
    return f"{int(round(p_ratio * 100))}% of loss was fat"


def explain_p_ratio_result(p_ratio: float) -> str:
    """Human-readable explanation of an observed P-ratio"""
    quality = get_p_ratio_quality(p_ratio)

    if quality == PRatioQuality.EXCELLENT:
        return "Excellent! Almost all weight lost was fat, with minimal muscle loss."
    elif quality == PRatioQuality.GOOD:
        return "Good result. Most weight lost was fat with some muscle loss."
    elif quality == PRatioQuality.FAIR:
        return "Fair result. Some muscle was lost along with fat."
    else:
        return (
            "More muscle was lost than ideal. "
            "Consider adjusting protein, training, or deficit."
        )
