"""
Compositional Analysis Module

Angle and horizon analysis, leading line detection, the dynamic composition
grid, rule evaluation, scoring and adjustment suggestions, orchestrated by the
CompositionMatcher.
"""

from .angle_detector import AngleAnalysis, AngleDetector, Line
from .leading_lines import LeadingLine, LeadingLinesAnalysis, LeadingLinesDetector, LineType
from .dynamic_grid import DynamicGrid, GridType, build_dynamic_grid
from .rule_evaluators import (
    AnalysisContext,
    BaseRuleEvaluator,
    CompositionMatch,
    CompositionRule,
    DynamicLine,
    OverlayLineType,
    RuleOfThirdsEvaluator,
    LeadingLinesEvaluator,
    SymmetryEvaluator,
    FramingEvaluator,
    DiagonalsEvaluator,
    create_rule_evaluators
)
from .scoring_algorithms import CompositionScorer
from .suggestion_engine import Adjustment, AdjustmentType, SuggestionEngine
from .composition_matcher import CompositionMatcher, CompositionRecommendation

__all__ = [
    'AngleAnalysis',
    'AngleDetector',
    'Line',
    'LeadingLine',
    'LeadingLinesAnalysis',
    'LeadingLinesDetector',
    'LineType',
    'DynamicGrid',
    'GridType',
    'build_dynamic_grid',
    'AnalysisContext',
    'BaseRuleEvaluator',
    'CompositionMatch',
    'CompositionRule',
    'DynamicLine',
    'OverlayLineType',
    'RuleOfThirdsEvaluator',
    'LeadingLinesEvaluator',
    'SymmetryEvaluator',
    'FramingEvaluator',
    'DiagonalsEvaluator',
    'create_rule_evaluators',
    'CompositionScorer',
    'Adjustment',
    'AdjustmentType',
    'SuggestionEngine',
    'CompositionMatcher',
    'CompositionRecommendation'
]

__version__ = "1.0.0"
