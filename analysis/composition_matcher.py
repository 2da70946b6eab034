#!/usr/bin/env python3
"""
Composition Matcher

This module provides the CompositionMatcher class that orchestrates the
preprocessor, the angle and leading-line detectors and the rule evaluators
into a single CompositionRecommendation per image.

"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging
from dataclasses import dataclass
from datetime import datetime

from preprocessing.image_preprocessor import ImagePreprocessor
from preprocessing.pixel_buffer import HistogramData, PixelBuffer
from utils.concurrency import CancellationToken, check_cancelled
from utils.geometry import Rect
from utils.validation import ValidationError, validate_engine_config

from .angle_detector import AngleAnalysis, AngleDetector
from .dynamic_grid import DynamicGrid, build_dynamic_grid
from .leading_lines import LeadingLinesAnalysis, LeadingLinesDetector
from .rule_evaluators import (
    AnalysisContext,
    BaseRuleEvaluator,
    CompositionMatch,
    CompositionRule,
    create_rule_evaluators
)
from .scoring_algorithms import CompositionScorer
from .suggestion_engine import Adjustment, SuggestionEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompositionRecommendation:
    """
    Complete composition analysis of one image.

    Besides the verdict it carries the evidence it was built from so a
    presentation layer can draw overlays without re-running the analysis.
    """

    primary_composition: CompositionRule
    matches: Tuple[CompositionMatch, ...]
    dynamic_grid: DynamicGrid
    suggested_adjustments: Tuple[Adjustment, ...]
    overall_score: float
    histogram: HistogramData
    angle_analysis: AngleAnalysis
    leading_lines: LeadingLinesAnalysis
    salient_regions: Tuple[Rect, ...]

    def to_dict(self) -> Dict[str, Any]:
        """ Convert results to dictionary format. """

        return {
            'primary_composition': self.primary_composition.value,
            'matches': [match.to_dict() for match in self.matches],
            'dynamic_grid': self.dynamic_grid.to_dict(),
            'suggested_adjustments': [adjustment.to_dict() for adjustment in self.suggested_adjustments],
            'overall_score': self.overall_score,
            'histogram': self.histogram.to_dict(),
            'angle_analysis': self.angle_analysis.to_dict(),
            'leading_lines': self.leading_lines.to_dict(),
            'salient_regions': [tuple(region) for region in self.salient_regions]
        }


class CompositionMatcher:
    """

    Main composition analysis orchestrator.

    This class coordinates the preprocessor, the angle and leading-line
    detectors, rule evaluation, scoring and adjustment generation. All
    components share one preprocessor so its cache serves every stage.

    """

    def __init__(self,
                 preprocessor: Optional[ImagePreprocessor] = None,
                 angle_detector: Optional[AngleDetector] = None,
                 leading_lines_detector: Optional[LeadingLinesDetector] = None,
                 config: Optional[Dict[str, Any]] = None,
                 rule_evaluators: Optional[Dict[CompositionRule, BaseRuleEvaluator]] = None):
        """
        Initialize the composition matcher.

        Args:
            preprocessor: Shared preprocessor (built from the 'preprocessing' section when omitted)
            angle_detector: Angle detector (built from the 'angle' section when omitted)
            leading_lines_detector: Leading line detector (built from 'leading_lines' when omitted)
            config: Configuration dictionary with one section per component
            rule_evaluators: Evaluator per CompositionRule (built from 'rules' when omitted)

        Raises:
            ValidationError: If the configuration is invalid or a rule has no evaluator
        """

        self.config = config or {}

        is_valid, errors = validate_engine_config(self.config)
        if not is_valid:
            raise ValidationError("Invalid composition engine configuration", errors)

        self.preprocessor = preprocessor or ImagePreprocessor(self.config.get('preprocessing'))
        self.angle_detector = angle_detector or AngleDetector(self.preprocessor, self.config.get('angle'))
        self.leading_lines_detector = leading_lines_detector or LeadingLinesDetector(
            self.preprocessor, self.config.get('leading_lines')
        )

        # Initialize rule evaluators
        self.rule_evaluators = rule_evaluators or create_rule_evaluators(self.config.get('rules'))

        missing = [rule.value for rule in CompositionRule if rule not in self.rule_evaluators]
        if missing:
            raise ValidationError("Every composition rule needs an evaluator",
                                  [f"No evaluator for {name}" for name in missing])

        # Initialize scoring system
        self.scorer = CompositionScorer(self.config.get('scoring'))

        # Initialize suggestion engine
        self.suggestion_engine = SuggestionEngine(self.config.get('suggestions'))

        logger.info(f"CompositionMatcher initialized with {len(self.rule_evaluators)} rule evaluators")

    def analyze(self, image: PixelBuffer,
                subject_regions: Optional[Sequence[Rect]] = None,
                cancel_token: Optional[CancellationToken] = None) -> CompositionRecommendation:
        """
        Perform composition analysis on an image.

        Args:
            image: Input buffer
            subject_regions: Regions of interest supplied by the caller; they replace
                the preprocessor's salient region proposal (main subject first)
            cancel_token: Optional token to abort the analysis

        Returns:
            CompositionRecommendation (a low-confidence one for unreadable input)

        Raises:
            AnalysisCancelled: If the token is cancelled before the analysis completes
        """

        start_time = datetime.now()
        size = image.size if self.preprocessor.is_readable(image) else (0, 0)

        # Step 1: gather evidence
        logger.debug("Analyzing histogram...")
        histogram = self.preprocessor.analyze_histogram(image, cancel_token)
        check_cancelled(cancel_token)

        logger.debug("Analyzing angles...")
        angle_analysis = self.angle_detector.analyze_image_angle(image, cancel_token)
        check_cancelled(cancel_token)

        logger.debug("Detecting leading lines...")
        leading_lines = self.leading_lines_detector.detect_leading_lines(image, cancel_token)
        check_cancelled(cancel_token)

        if subject_regions is not None:
            salient_regions = tuple(subject_regions)
        else:
            logger.debug("Detecting salient regions...")
            salient_regions = tuple(self.preprocessor.detect_salient_regions(image))
        check_cancelled(cancel_token)

        logger.debug(f"Histogram: {histogram.distribution.description}, "
                     f"dominant angle: {angle_analysis.dominant_angle:.2f}, "
                     f"leading lines: {len(leading_lines.detected_lines)}, "
                     f"salient regions: {len(salient_regions)}")

        # Step 2: dynamic grid
        dynamic_grid = build_dynamic_grid(size, angle_analysis, leading_lines)

        context = AnalysisContext(
            image_size=size,
            histogram=histogram,
            angle_analysis=angle_analysis,
            leading_lines=leading_lines,
            salient_regions=salient_regions,
            dynamic_grid=dynamic_grid
        )

        # Step 3: rule matching
        matches = self._match_rules(context)

        # Step 4: verdict and adjustments
        primary = self.scorer.determine_primary_composition(matches)
        overall_score = self.scorer.calculate_overall_score(matches)

        adjustments = self.suggestion_engine.generate_adjustments(
            matches, angle_analysis, leading_lines, salient_regions, size, dynamic_grid
        )

        processing_time = (datetime.now() - start_time).total_seconds()

        logger.info(f"Analysis completed in {processing_time:.3f}s - Score: {overall_score:.3f} "
                    f"({primary.value})")

        return CompositionRecommendation(
            primary_composition=primary,
            matches=tuple(matches),
            dynamic_grid=dynamic_grid,
            suggested_adjustments=tuple(adjustments),
            overall_score=overall_score,
            histogram=histogram,
            angle_analysis=angle_analysis,
            leading_lines=leading_lines,
            salient_regions=salient_regions
        )

    def _match_rules(self, context: AnalysisContext) -> List[CompositionMatch]:
        """Run the evaluators in CompositionRule order and keep accepted matches."""

        matches = []

        for rule in CompositionRule:
            match = self.rule_evaluators[rule].match(context)
            if match is not None:
                matches.append(match)

        return matches

    async def analyze_async(self, image: PixelBuffer,
                            subject_regions: Optional[Sequence[Rect]] = None,
                            cancel_token: Optional[CancellationToken] = None) -> CompositionRecommendation:
        """
        Run ``analyze`` on a worker thread.

        Cancelling the awaiting task cancels the token, so the worker stops at
        its next stage or unit boundary.
        """

        token = cancel_token or CancellationToken()

        try:
            return await asyncio.to_thread(self.analyze, image, subject_regions, token)
        except asyncio.CancelledError:
            token.cancel()
            raise

    def batch_analyze(self, images: Sequence[PixelBuffer],
                      cancel_token: Optional[CancellationToken] = None) -> List[CompositionRecommendation]:
        """Analyze several images in order."""

        results = []

        for i, image in enumerate(images):
            check_cancelled(cancel_token)
            results.append(self.analyze(image, cancel_token=cancel_token))
            logger.debug(f"Batch analysis: {i + 1}/{len(images)} done")

        return results

    def clear_cache(self) -> None:
        self.preprocessor.clear_cache()
