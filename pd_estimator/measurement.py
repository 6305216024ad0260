"""
Measurement Module - Card-Scaled PD Calculation

Converts the four marker positions into a millimetre PD using the card
width as the scale reference, then grades the result with a continuous
confidence score and a list of validation issues.
"""

from dataclasses import dataclass, field
from typing import List

from .markers import MarkerSet
from .utils import (
    CARD_WIDTH_MM,
    CONFIDENCE_RAMP_PX,
    MAX_CARD_TILT_RATIO,
    MAX_PD_MM,
    MIN_CARD_PIXEL_WIDTH,
    MIN_PD_MM,
    clamp,
    distance,
    round_to_half,
)


GOOD_CONFIDENCE = 0.75
MODERATE_CONFIDENCE = 0.5
OUT_OF_RANGE_PENALTY = 0.3

QUALITY_MESSAGES = {
    "good": "Good quality capture. Manual marker check still recommended.",
    "moderate": "Moderate quality. Consider another capture to confirm.",
    "low": "Low confidence - check marker placement and retake.",
}


@dataclass
class MeasurementResult:
    """
    Result of a PD calculation.
    
    Always derived from a MarkerSet; never stored on its own.
    """
    pupil_pixel_distance: float
    card_pixel_width: float
    mm_per_pixel: float
    pd_mm: float
    pd_mm_rounded: float
    confidence: float
    quality: str
    quality_message: str
    issues: List[str] = field(default_factory=list)
    
    @property
    def valid(self) -> bool:
        """True when no validation issue was raised."""
        return not self.issues
    
    def to_dict(self) -> dict:
        """Convert result to dictionary for serialization."""
        return {
            "pupilPixelDistance": self.pupil_pixel_distance,
            "cardPixelWidth": self.card_pixel_width,
            "mmPerPixel": self.mm_per_pixel,
            "pdMm": self.pd_mm,
            "pdMmRounded": self.pd_mm_rounded,
            "confidence": self.confidence,
            "quality": self.quality,
            "qualityMessage": self.quality_message,
            "issues": list(self.issues),
            "valid": self.valid,
        }
    
    def __str__(self) -> str:
        state = "valid" if self.valid else f"{len(self.issues)} issue(s)"
        return (
            f"MeasurementResult(PD={self.pd_mm_rounded:.1f}mm, "
            f"confidence={self.confidence:.0%}, {state})"
        )


class PDCalculator:
    """
    Card-calibrated PD calculator.
    
    Thresholds default to the ID-1 card and adult PD constants but can be
    overridden per instance.
    
    Usage:
        calculator = PDCalculator()
        result = calculator.calculate(markers)
        print(f"PD: {result.pd_mm_rounded}mm")
    """
    
    def __init__(
        self,
        card_width_mm: float = CARD_WIDTH_MM,
        min_card_pixel_width: float = MIN_CARD_PIXEL_WIDTH,
        min_pd_mm: float = MIN_PD_MM,
        max_pd_mm: float = MAX_PD_MM,
        max_tilt_ratio: float = MAX_CARD_TILT_RATIO,
        confidence_ramp_px: float = CONFIDENCE_RAMP_PX
    ):
        """
        Initialize the calculator.
        
        Args:
            card_width_mm: Physical width of the reference card
            min_card_pixel_width: Smallest usable card span in pixels
            min_pd_mm: Lower bound of plausible PD
            max_pd_mm: Upper bound of plausible PD
            max_tilt_ratio: Card tilt ratio above which a warning is raised
            confidence_ramp_px: Card span (above the minimum) for full scale confidence
        """
        if min_pd_mm > max_pd_mm:
            raise ValueError(f"min_pd_mm ({min_pd_mm}) exceeds max_pd_mm ({max_pd_mm})")
        if max_tilt_ratio <= 0 or confidence_ramp_px <= 0:
            raise ValueError("max_tilt_ratio and confidence_ramp_px must be positive")
        
        self.card_width_mm = card_width_mm
        self.min_card_pixel_width = min_card_pixel_width
        self.min_pd_mm = min_pd_mm
        self.max_pd_mm = max_pd_mm
        self.max_tilt_ratio = max_tilt_ratio
        self.confidence_ramp_px = confidence_ramp_px
    
    def calculate(self, markers: MarkerSet) -> MeasurementResult:
        """
        Calculate PD from the four markers.
        
        Args:
            markers: Marker positions in image pixels
            
        Returns:
            MeasurementResult with confidence and validation issues
        """
        pupil_px = distance(markers.left_pupil, markers.right_pupil)
        # Euclidean span, so a slightly tilted card line still scales correctly
        card_px = distance(markers.left_card, markers.right_card)
        mm_per_pixel = self.card_width_mm / card_px if card_px > 0 else 0.0
        pd_mm = pupil_px * mm_per_pixel
        
        tilt_ratio = abs(markers.left_card.y - markers.right_card.y) / max(card_px, 1.0)
        out_of_range = pd_mm < self.min_pd_mm or pd_mm > self.max_pd_mm
        
        issues = []
        if card_px < self.min_card_pixel_width:
            issues.append(
                "Card markers are too close. Move card corner points to real card edges."
            )
        if out_of_range:
            issues.append(
                f"Estimated PD {pd_mm:.1f} mm is outside expected range "
                f"({self.min_pd_mm:g}-{self.max_pd_mm:g} mm)."
            )
        if tilt_ratio > self.max_tilt_ratio:
            issues.append(
                "Card line appears heavily tilted. "
                "Keep card parallel to camera for better scale."
            )
        
        confidence = self._confidence(card_px, tilt_ratio, out_of_range)
        quality = self._quality(confidence, issues)
        
        return MeasurementResult(
            pupil_pixel_distance=pupil_px,
            card_pixel_width=card_px,
            mm_per_pixel=mm_per_pixel,
            pd_mm=pd_mm,
            pd_mm_rounded=round_to_half(pd_mm),
            confidence=confidence,
            quality=quality,
            quality_message=QUALITY_MESSAGES[quality],
            issues=issues,
        )
    
    def _confidence(self, card_px: float, tilt_ratio: float, out_of_range: bool) -> float:
        """
        Graded confidence in [0, 1].
        
        A wider card span raises the scale term; tilt lowers the tilt term
        linearly until the rejection threshold.
        """
        scale_confidence = clamp(
            (card_px - self.min_card_pixel_width) / self.confidence_ramp_px, 0.0, 1.0
        )
        tilt_confidence = 1.0 - clamp(tilt_ratio / self.max_tilt_ratio, 0.0, 1.0)
        
        confidence = clamp(0.35 + 0.45 * scale_confidence + 0.20 * tilt_confidence, 0.0, 1.0)
        if out_of_range:
            confidence -= OUT_OF_RANGE_PENALTY
        
        return clamp(confidence, 0.0, 1.0)
    
    @staticmethod
    def _quality(confidence: float, issues: List[str]) -> str:
        # "good" needs a clean result; "moderate" only looks at confidence
        if confidence >= GOOD_CONFIDENCE and not issues:
            return "good"
        if confidence >= MODERATE_CONFIDENCE:
            return "moderate"
        return "low"


_default_calculator = PDCalculator()


def calculate_pd(markers: MarkerSet) -> MeasurementResult:
    """Calculate PD with the default thresholds."""
    return _default_calculator.calculate(markers)
