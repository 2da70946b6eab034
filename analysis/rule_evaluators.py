#!/usr/bin/env python3
"""
Rule Evaluators for Compositional Analysis

This module contains specialized evaluators for each compositional rule
including rule of thirds, leading lines, symmetry, framing and diagonals.
Every evaluator scores the shared evidence of one analysis pass and reports
the overlay points and lines that support its verdict.

"""

import numpy as np
from scipy.spatial.distance import cdist
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging
from abc import ABC, abstractmethod

from preprocessing.pixel_buffer import BrightnessDistribution, HistogramData
from utils.geometry import Point, Rect

from .angle_detector import AngleAnalysis
from .dynamic_grid import DynamicGrid
from .leading_lines import LeadingLinesAnalysis

logger = logging.getLogger(__name__)


class CompositionRule(Enum):
    RULE_OF_THIRDS = "Rule of Thirds"
    LEADING_LINES = "Leading Lines"
    SYMMETRY = "Symmetry"
    FRAMING = "Framing"
    DIAGONALS = "Diagonals"

    @property
    def description(self) -> str:
        return _RULE_DESCRIPTIONS[self]


_RULE_DESCRIPTIONS = {
    CompositionRule.RULE_OF_THIRDS: "Place key elements along lines dividing the image into thirds "
                                    "or at their intersections for a balanced composition.",
    CompositionRule.LEADING_LINES: "Use natural lines to guide the viewer's eye toward your subject "
                                   "or through the image.",
    CompositionRule.SYMMETRY: "Create balance by arranging elements equally on both sides of the image.",
    CompositionRule.FRAMING: "Use foreground elements to frame your subject and add depth.",
    CompositionRule.DIAGONALS: "Use diagonal lines to create dynamic tension and movement.",
}


class OverlayLineType(Enum):
    GRID = "grid"
    LEADING = "leading"
    HORIZON = "horizon"
    FRAMING = "framing"
    DIAGONAL = "diagonal"


@dataclass(frozen=True)
class DynamicLine:
    """Labelled segment a presentation layer can draw over the image."""

    start: Point
    end: Point
    line_type: OverlayLineType
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': tuple(self.start),
            'end': tuple(self.end),
            'type': self.line_type.value,
            'label': self.label
        }


@dataclass(frozen=True)
class CompositionMatch:
    rule: CompositionRule
    confidence: float
    dynamic_points: Tuple[Point, ...]
    dynamic_lines: Tuple[DynamicLine, ...]
    recommendation: str
    improvement_suggestion: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule': self.rule.value,
            'confidence': self.confidence,
            'dynamic_points': [tuple(p) for p in self.dynamic_points],
            'dynamic_lines': [line.to_dict() for line in self.dynamic_lines],
            'recommendation': self.recommendation,
            'improvement_suggestion': self.improvement_suggestion
        }


@dataclass(frozen=True)
class AnalysisContext:
    """Evidence gathered once per analysis and shared by every evaluator."""

    image_size: Tuple[int, int]
    histogram: HistogramData
    angle_analysis: AngleAnalysis
    leading_lines: LeadingLinesAnalysis
    salient_regions: Tuple[Rect, ...]
    dynamic_grid: DynamicGrid

    @property
    def main_region(self) -> Optional[Rect]:
        return self.salient_regions[0] if self.salient_regions else None


class BaseRuleEvaluator(ABC):
    """
    Abstract base class for all rule evaluators.

    Provides common interface and utility methods for compositional rule evaluation.

    """

    rule: CompositionRule
    threshold_key: Optional[str] = None

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize the rule evaluator with configuration"""

        self.config = {**self._get_default_config(), **(config or {})}

    def _get_default_config(self) -> Dict[str, Any]:
        return dict(DEFAULT_RULE_CONFIG)

    @abstractmethod
    def evaluate(self, context: AnalysisContext) -> CompositionMatch:
        """
        Score the rule on the gathered evidence.

        Args:
            context: Evidence from one analysis pass

        Returns:
            CompositionMatch, whether or not the rule is accepted
        """

        pass

    @property
    def threshold(self) -> float:
        return self.config[self.threshold_key] if self.threshold_key else 0.0

    def is_accepted(self, match: CompositionMatch, context: AnalysisContext) -> bool:
        return match.confidence > self.threshold

    def match(self, context: AnalysisContext) -> Optional[CompositionMatch]:
        """Evaluate and keep the result only if the rule is accepted."""

        result = self.evaluate(context)
        accepted = self.is_accepted(result, context)

        logger.debug(f"{self.rule.value}: confidence = {result.confidence:.3f}, accepted = {accepted}")

        return result if accepted else None

    def _normalize_score(self, score: float, min_val: float = 0.0, max_val: float = 1.0) -> float:
        """Normalize score to [0, 1] range."""

        return max(0.0, min(1.0, (score - min_val) / (max_val - min_val)))


DEFAULT_RULE_CONFIG = {
    'rule_of_thirds_threshold': 0.2,
    'rule_of_thirds_increment': 0.3,
    'rule_of_thirds_proximity': 0.1,
    'symmetry_threshold': 0.3,
    'symmetry_strong': 0.7,
    'framing_threshold': 0.3,
    'framing_contrast_bonus': 0.3,
    'framing_min_margin': 0.1,
    'diagonals_threshold': 0.3,
    'diagonal_weight': 0.5,
    'diagonal_angle_range': (20.0, 70.0),
    'max_overlay_lines': 5
}


class RuleOfThirdsEvaluator(BaseRuleEvaluator):
    """
    Evaluates adherence to the Rule of Thirds compositional principle.

    Each salient region centre earns confidence for every grid intersection
    close to it.

    """

    rule = CompositionRule.RULE_OF_THIRDS
    threshold_key = 'rule_of_thirds_threshold'

    def evaluate(self, context: AnalysisContext) -> CompositionMatch:
        w, h = context.image_size
        grid = context.dynamic_grid
        proximity = min(w, h) * self.config['rule_of_thirds_proximity']

        confidence = 0.0
        aligned_points = []

        if context.salient_regions and grid.intersection_points:
            centers = np.array([region.center for region in context.salient_regions], dtype=np.float64)
            points = np.array(grid.intersection_points, dtype=np.float64)
            distances = cdist(centers, points)

            for row in distances:
                for index in np.flatnonzero(row < proximity):
                    confidence += self.config['rule_of_thirds_increment']
                    aligned_points.append(grid.intersection_points[index])

        lines = [
            DynamicLine(Point(x, 0.0), Point(x, float(h)), OverlayLineType.GRID, "Vertical Third")
            for x in grid.vertical_lines
        ]
        lines += [
            DynamicLine(Point(0.0, y), Point(float(w), y), OverlayLineType.GRID, "Horizontal Third")
            for y in grid.horizontal_lines
        ]

        return CompositionMatch(
            rule=self.rule,
            confidence=self._normalize_score(confidence),
            dynamic_points=tuple(aligned_points),
            dynamic_lines=tuple(lines),
            recommendation="Your image shows good use of the rule of thirds with subjects near key "
                           "intersection points.",
            improvement_suggestion="Try aligning your main subject more precisely with the grid "
                                   "intersections for stronger composition."
        )


class LeadingLinesEvaluator(BaseRuleEvaluator):
    """
    Evaluates leading lines that guide the viewer's eye.

    Accepted only when at least one strong line was traced; confidence grows
    with the number of lines.

    """

    rule = CompositionRule.LEADING_LINES

    def evaluate(self, context: AnalysisContext) -> CompositionMatch:
        analysis = context.leading_lines
        lines = analysis.detected_lines

        overlay = tuple(
            DynamicLine(line.start, line.end, OverlayLineType.LEADING, f"Leading Line {index + 1}")
            for index, line in enumerate(lines[:self.config['max_overlay_lines']])
        )

        return CompositionMatch(
            rule=self.rule,
            confidence=min(len(lines) / 3.0, 1.0),
            dynamic_points=tuple(analysis.convergence_points),
            dynamic_lines=overlay,
            recommendation="Strong leading lines detected that guide the viewer's eye through your composition.",
            improvement_suggestion="Ensure your leading lines direct attention to your main subject "
                                   "or point of interest."
        )

    def is_accepted(self, match: CompositionMatch, context: AnalysisContext) -> bool:
        return context.leading_lines.has_strong_leading_lines


class SymmetryEvaluator(BaseRuleEvaluator):
    """Evaluates left/right balance of the salient region weight."""

    rule = CompositionRule.SYMMETRY
    threshold_key = 'symmetry_threshold'

    def evaluate(self, context: AnalysisContext) -> CompositionMatch:
        w, h = context.image_size
        center_x = w / 2

        left_weight, right_weight = self._region_weights(context.salient_regions, center_x)

        # No regions means no evidence of balance
        if context.salient_regions:
            balance = 1.0 - abs(left_weight - right_weight) / (left_weight + right_weight + 0.001)
        else:
            balance = 0.0

        confidence = self._normalize_score(balance)
        strength = "strong" if confidence > self.config['symmetry_strong'] else "moderate"

        return CompositionMatch(
            rule=self.rule,
            confidence=confidence,
            dynamic_points=(Point(center_x, h / 2),),
            dynamic_lines=(
                DynamicLine(Point(center_x, 0.0), Point(center_x, float(h)), OverlayLineType.GRID, "Center Line"),
            ),
            recommendation=f"Your image shows {strength} symmetrical balance.",
            improvement_suggestion="Perfect symmetry can be powerful for architectural and portrait photography."
        )

    @staticmethod
    def _region_weights(regions: Sequence[Rect], center_x: float) -> Tuple[float, float]:
        left = 0.0
        right = 0.0

        for region in regions:
            if region.mid_x < center_x:
                left += region.area
            else:
                right += region.area

        return left, right


class FramingEvaluator(BaseRuleEvaluator):
    """
    Evaluates natural framing of the main subject.

    High-contrast tonality and a comfortable margin between the main region
    and every frame edge both count as framing evidence.

    """

    rule = CompositionRule.FRAMING
    threshold_key = 'framing_threshold'

    def evaluate(self, context: AnalysisContext) -> CompositionMatch:
        score = 0.0
        lines: List[DynamicLine] = []

        if context.histogram.distribution is BrightnessDistribution.HIGH_CONTRAST:
            score += self.config['framing_contrast_bonus']

        region = context.main_region
        margin = self.margin_ratio(region, context.image_size) if region is not None else 0.0

        if margin > self.config['framing_min_margin']:
            score += margin
            lines = [
                DynamicLine(Point(region.min_x, region.min_y), Point(region.max_x, region.min_y),
                            OverlayLineType.FRAMING, "Frame Top"),
                DynamicLine(Point(region.min_x, region.max_y), Point(region.max_x, region.max_y),
                            OverlayLineType.FRAMING, "Frame Bottom")
            ]

        return CompositionMatch(
            rule=self.rule,
            confidence=self._normalize_score(score),
            dynamic_points=(),
            dynamic_lines=tuple(lines),
            recommendation="Natural framing elements detected in your composition.",
            improvement_suggestion="Use darker foreground elements to create stronger framing and add depth."
        )

    @staticmethod
    def margin_ratio(region: Rect, size: Tuple[int, int]) -> float:
        """Smallest distance from the region to a frame edge, relative to that axis."""

        w, h = size
        if w <= 0 or h <= 0:
            return 0.0

        return min(
            region.min_x / w,
            region.min_y / h,
            (w - region.max_x) / w,
            (h - region.max_y) / h
        )


class DiagonalsEvaluator(BaseRuleEvaluator):
    """Evaluates diagonal leading lines."""

    rule = CompositionRule.DIAGONALS
    threshold_key = 'diagonals_threshold'

    def evaluate(self, context: AnalysisContext) -> CompositionMatch:
        low, high = self.config['diagonal_angle_range']

        confidence = 0.0
        lines = []

        for line in context.leading_lines.detected_lines:
            if low < abs(line.angle) < high:
                confidence += line.strength * self.config['diagonal_weight']
                lines.append(DynamicLine(line.start, line.end, OverlayLineType.DIAGONAL, "Diagonal"))

        return CompositionMatch(
            rule=self.rule,
            confidence=self._normalize_score(confidence),
            dynamic_points=(),
            dynamic_lines=tuple(lines),
            recommendation="Dynamic diagonal lines add energy and movement to your composition.",
            improvement_suggestion="Diagonal lines from bottom-left to top-right create a sense of "
                                   "growth and positivity."
        )


def create_rule_evaluators(config: Optional[Dict[str, Any]] = None) -> Dict[CompositionRule, BaseRuleEvaluator]:
    """One evaluator per CompositionRule, sharing the rules configuration."""

    return {
        CompositionRule.RULE_OF_THIRDS: RuleOfThirdsEvaluator(config),
        CompositionRule.LEADING_LINES: LeadingLinesEvaluator(config),
        CompositionRule.SYMMETRY: SymmetryEvaluator(config),
        CompositionRule.FRAMING: FramingEvaluator(config),
        CompositionRule.DIAGONALS: DiagonalsEvaluator(config)
    }
