#!/usr/bin/env python3
"""
Suggestion Engine for Composition Improvement

This module turns the evidence and rule matches of an analysis into concrete
adjustments a photographer can make: rotating, reframing, moving the subject
or changing the shooting angle.

"""

from typing import Dict, List, Optional, Any, Sequence, Tuple
import logging
from dataclasses import dataclass
from enum import Enum

from utils.geometry import Rect

from .angle_detector import AngleAnalysis
from .dynamic_grid import DynamicGrid
from .leading_lines import LeadingLinesAnalysis
from .rule_evaluators import CompositionMatch, CompositionRule

logger = logging.getLogger(__name__)


class AdjustmentType(Enum):
    """Kinds of composition adjustments."""
    REFRAME = "reframe"
    ROTATE = "rotate"
    MOVE_SUBJECT = "move_subject"
    CHANGE_ANGLE = "change_angle"


@dataclass(frozen=True)
class Adjustment:
    """
    Individual composition adjustment.

    ``visual_guide`` is the region the adjustment refers to, when it has one.
    """
    adjustment_type: AdjustmentType
    description: str
    visual_guide: Optional[Rect] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert adjustment to dictionary format."""
        return {
            'type': self.adjustment_type.value,
            'description': self.description,
            'visual_guide': tuple(self.visual_guide) if self.visual_guide else None
        }


class SuggestionEngine:
    """
    Main suggestion generation engine.

    Adjustments are produced in a fixed order: rotate, reframe, move subject,
    change angle.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize suggestion engine.

        Args:
            config: Configuration dictionary for suggestion parameters
        """
        self.config = {**self._get_default_config(), **(config or {})}

        logger.info("SuggestionEngine initialized")

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration for suggestion engine."""
        return {
            'center_tolerance': 0.1,
            'suggest_subject_moves': True,
            'suggest_angle_changes': True
        }

    def generate_adjustments(self,
                             matches: Sequence[CompositionMatch],
                             angle_analysis: AngleAnalysis,
                             leading_lines: LeadingLinesAnalysis,
                             salient_regions: Sequence[Rect],
                             image_size: Tuple[int, int],
                             dynamic_grid: Optional[DynamicGrid] = None) -> List[Adjustment]:
        """
        Generate adjustments based on analysis results.

        Args:
            matches: Accepted rule matches
            angle_analysis: Tilt evidence
            leading_lines: Leading line evidence
            salient_regions: Regions of interest, main subject first
            image_size: Image (width, height)
            dynamic_grid: Grid used to place the subject (move-subject is skipped without it)

        Returns:
            List of adjustments
        """
        adjustments = []

        rotate = self._rotation_adjustment(angle_analysis)
        if rotate is not None:
            adjustments.append(rotate)

        main_region = salient_regions[0] if salient_regions else None

        if main_region is not None:
            reframe = self._reframe_adjustment(main_region, image_size)
            if reframe is not None:
                adjustments.append(reframe)

            accepted_rules = {match.rule for match in matches}
            if (self.config['suggest_subject_moves'] and dynamic_grid is not None
                    and CompositionRule.RULE_OF_THIRDS not in accepted_rules):
                adjustments.append(self._move_subject_adjustment(main_region, dynamic_grid))

        if (self.config['suggest_angle_changes'] and leading_lines.detected_lines
                and not leading_lines.has_strong_leading_lines):
            adjustments.append(Adjustment(
                AdjustmentType.CHANGE_ANGLE,
                "Try a lower or more oblique angle so the lines in the scene lead toward your subject"
            ))

        logger.debug(f"Generated {len(adjustments)} adjustments")

        return adjustments

    def _rotation_adjustment(self, angle_analysis: AngleAnalysis) -> Optional[Adjustment]:
        if not angle_analysis.should_straighten:
            return None

        correction = -angle_analysis.correction_angle
        return Adjustment(
            AdjustmentType.ROTATE,
            f"Rotate image by {correction:.1f}° to straighten horizon"
        )

    def _reframe_adjustment(self, region: Rect, image_size: Tuple[int, int]) -> Optional[Adjustment]:
        w, h = image_size
        tolerance = self.config['center_tolerance']

        offset_x = region.mid_x - w / 2
        offset_y = region.mid_y - h / 2

        if abs(offset_x) > w * tolerance or abs(offset_y) > h * tolerance:
            return Adjustment(
                AdjustmentType.REFRAME,
                "Consider reframing to better position your main subject",
                region
            )

        return None

    def _move_subject_adjustment(self, region: Rect, dynamic_grid: DynamicGrid) -> Adjustment:
        target = dynamic_grid.nearest_intersection(region.center)
        guide = Rect.centered_at(target, region.width, region.height)

        return Adjustment(
            AdjustmentType.MOVE_SUBJECT,
            f"Move your main subject toward the grid intersection at ({target.x:.0f}, {target.y:.0f})",
            guide
        )
