"""
Unit tests for the dynamic grid, rule evaluators, scoring and adjustments.
"""

import os
import sys
import pytest

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from analysis.angle_detector import AngleAnalysis, Line
from analysis.dynamic_grid import GridType, build_dynamic_grid
from analysis.leading_lines import LeadingLine, LeadingLinesAnalysis, LineType
from analysis.rule_evaluators import (
    AnalysisContext,
    CompositionMatch,
    CompositionRule,
    DiagonalsEvaluator,
    FramingEvaluator,
    LeadingLinesEvaluator,
    OverlayLineType,
    RuleOfThirdsEvaluator,
    SymmetryEvaluator,
    create_rule_evaluators
)
from analysis.scoring_algorithms import CompositionScorer
from analysis.suggestion_engine import AdjustmentType, SuggestionEngine
from preprocessing.pixel_buffer import BrightnessDistribution, HistogramData
from utils.geometry import Point, Rect, ZERO_VECTOR


LEVEL = AngleAnalysis(0.0, None, (), (), 0.7, False)


def vertical_line(x, height=300.0):
    return Line(Point(x, 0.0), Point(x, height), 90.0, 1.0)


def leading_line(angle, strength, line_type=LineType.DIAGONAL):
    return LeadingLine((Point(0.0, 0.0), Point(100.0, 100.0)), strength, angle, line_type)


def leading_analysis(lines=(), strong=False, convergence=(), focal=()):
    return LeadingLinesAnalysis(tuple(lines), tuple(convergence), ZERO_VECTOR, strong, tuple(focal))


def make_context(size=(300, 300), regions=(), histogram=None, angle=LEVEL, leading=None):
    leading = leading or LeadingLinesAnalysis.empty()
    return AnalysisContext(
        image_size=size,
        histogram=histogram or HistogramData.empty(),
        angle_analysis=angle,
        leading_lines=leading,
        salient_regions=tuple(regions),
        dynamic_grid=build_dynamic_grid(size, angle, leading)
    )


def make_match(rule, confidence):
    return CompositionMatch(rule, confidence, (), (), "", "")


class TestDynamicGrid:
    """Tests for grid construction."""

    def test_rule_of_thirds_seed(self):
        grid = build_dynamic_grid((300, 300), LEVEL, LeadingLinesAnalysis.empty())

        assert grid.vertical_lines == (100.0, 200.0)
        assert grid.horizontal_lines == (100.0, 200.0)
        assert len(grid.intersection_points) == 4
        assert grid.intersection_points[1] == Point(100.0, 200.0)
        assert grid.grid_type is GridType.RULE_OF_THIRDS

    def test_level_horizon_replaces_lower_line_on_tie(self):
        angle = AngleAnalysis(0.0, 0.0, (), (), 0.9, False)
        grid = build_dynamic_grid((300, 300), angle, LeadingLinesAnalysis.empty())

        assert grid.horizontal_lines == (100.0, 150.0)

    def test_tilted_horizon_replaces_nearest_line(self):
        angle = AngleAnalysis(10.0, 10.0, (), (), 0.9, True)
        grid = build_dynamic_grid((300, 300), angle, LeadingLinesAnalysis.empty())

        assert grid.horizontal_lines[0] == 100.0
        assert grid.horizontal_lines[1] == pytest.approx(176.45, abs=0.01)

    def test_horizon_outside_band_is_ignored(self):
        angle = AngleAnalysis(40.0, 40.0, (), (), 0.9, True)
        grid = build_dynamic_grid((300, 300), angle, LeadingLinesAnalysis.empty())

        assert grid.horizontal_lines == (100.0, 200.0)

    def test_vertical_lines_snap_grid(self):
        lines = (vertical_line(120.0), vertical_line(20.0), vertical_line(230.0))
        angle = AngleAnalysis(90.0, None, lines, (), 0.6, True)
        grid = build_dynamic_grid((300, 300), angle, LeadingLinesAnalysis.empty())

        # Only the first two vertical lines are considered; x = 20 is outside the band
        assert grid.vertical_lines == (120.0, 200.0)

    def test_focal_points_and_grid_type(self):
        leading = leading_analysis([leading_line(45.0, 0.8)], strong=True, focal=[Point(10.0, 20.0)])
        grid = build_dynamic_grid((300, 300), LEVEL, leading)

        assert len(grid.vertical_lines) == 2
        assert len(grid.horizontal_lines) == 2
        assert len(grid.intersection_points) == 5
        assert grid.intersection_points[-1] == Point(10.0, 20.0)
        assert grid.grid_type is GridType.DYNAMIC
        assert grid.nearest_intersection(Point(0.0, 0.0)) == Point(10.0, 20.0)


class TestRuleOfThirds:
    """Tests for the rule of thirds evaluator."""

    def test_region_on_intersection(self):
        context = make_context(regions=[Rect.centered_at(Point(100, 100), 40, 40)])
        match = RuleOfThirdsEvaluator().match(context)

        assert match.rule is CompositionRule.RULE_OF_THIRDS
        assert match.confidence == pytest.approx(0.3)
        assert match.dynamic_points == (Point(100.0, 100.0),)
        assert [line.label for line in match.dynamic_lines] == ["Vertical Third"] * 2 + ["Horizontal Third"] * 2
        assert all(line.line_type is OverlayLineType.GRID for line in match.dynamic_lines)

    def test_region_far_from_intersections(self):
        context = make_context(regions=[Rect.centered_at(Point(150, 150), 40, 40)])
        evaluator = RuleOfThirdsEvaluator()

        assert evaluator.evaluate(context).confidence == 0
        assert evaluator.match(context) is None

    def test_no_regions(self):
        assert RuleOfThirdsEvaluator().evaluate(make_context()).confidence == 0

    def test_confidence_is_capped(self):
        leading = leading_analysis(focal=[Point(100.0, 100.0)] * 4)
        context = make_context(regions=[Rect.centered_at(Point(100, 100), 40, 40)], leading=leading)

        assert RuleOfThirdsEvaluator().evaluate(context).confidence == 1.0


class TestLeadingLinesEvaluator:
    """Tests for the leading lines evaluator."""

    def test_requires_strong_lines(self):
        leading = leading_analysis([leading_line(45.0, 0.5)] * 3, strong=False)
        evaluator = LeadingLinesEvaluator()
        context = make_context(leading=leading)

        assert evaluator.evaluate(context).confidence == 1.0
        assert evaluator.match(context) is None

    def test_strong_lines(self):
        leading = leading_analysis([leading_line(45.0, 0.9), leading_line(10.0, 0.2)], strong=True,
                                   convergence=[Point(40.0, 40.0)])
        match = LeadingLinesEvaluator().match(make_context(leading=leading))

        assert match.confidence == pytest.approx(2 / 3)
        assert match.dynamic_points == (Point(40.0, 40.0),)
        assert [line.label for line in match.dynamic_lines] == ["Leading Line 1", "Leading Line 2"]

    def test_overlay_is_limited(self):
        leading = leading_analysis([leading_line(45.0, 0.9)] * 7, strong=True)
        match = LeadingLinesEvaluator().match(make_context(leading=leading))

        assert len(match.dynamic_lines) == 5


class TestSymmetry:
    """Tests for the symmetry evaluator."""

    def test_balanced_regions(self):
        regions = [Rect(50, 100, 40, 40), Rect(210, 100, 40, 40)]
        match = SymmetryEvaluator().match(make_context(regions=regions))

        assert match.confidence == pytest.approx(1.0, abs=1e-5)
        assert match.recommendation == "Your image shows strong symmetrical balance."
        assert match.dynamic_lines[0].label == "Center Line"
        assert match.dynamic_points == (Point(150.0, 150.0),)

    def test_moderate_balance(self):
        regions = [Rect(50, 100, 40, 40), Rect(210, 100, 40, 80)]
        match = SymmetryEvaluator().match(make_context(regions=regions))

        assert match.confidence == pytest.approx(2 / 3, abs=1e-4)
        assert "moderate" in match.recommendation

    def test_one_sided_region_is_imbalanced(self):
        context = make_context(size=(100, 100), regions=[Rect(65, 40, 20, 20)])
        evaluator = SymmetryEvaluator()

        assert evaluator.evaluate(context).confidence < 0.5
        assert evaluator.match(context) is None

    def test_no_regions_means_no_symmetry(self):
        assert SymmetryEvaluator().evaluate(make_context()).confidence == 0


class TestFraming:
    """Tests for the framing evaluator."""

    HIGH_CONTRAST = HistogramData((), BrightnessDistribution.HIGH_CONTRAST, 0.5)

    def test_framed_subject_with_contrast(self):
        context = make_context(size=(100, 100), regions=[Rect(65, 40, 20, 20)], histogram=self.HIGH_CONTRAST)
        match = FramingEvaluator().match(context)

        assert match.confidence == pytest.approx(0.45)
        assert [line.label for line in match.dynamic_lines] == ["Frame Top", "Frame Bottom"]
        assert match.dynamic_lines[0].start == Point(65, 40)
        assert match.dynamic_lines[1].end == Point(85, 60)

    def test_margin_alone_is_not_enough(self):
        context = make_context(size=(100, 100), regions=[Rect(65, 40, 20, 20)])
        evaluator = FramingEvaluator()

        assert evaluator.evaluate(context).confidence == pytest.approx(0.15)
        assert evaluator.match(context) is None

    def test_region_touching_edge(self):
        context = make_context(size=(100, 100), regions=[Rect(0, 40, 20, 20)], histogram=self.HIGH_CONTRAST)
        match = FramingEvaluator().evaluate(context)

        assert match.confidence == pytest.approx(0.3)
        assert match.dynamic_lines == ()

    def test_margin_ratio_of_empty_frame(self):
        assert FramingEvaluator.margin_ratio(Rect(0, 0, 1, 1), (0, 0)) == 0.0


class TestDiagonals:
    """Tests for the diagonals evaluator."""

    def test_diagonal_lines(self):
        leading = leading_analysis([leading_line(45.0, 0.5), leading_line(-135.0, 0.5), leading_line(0.0, 1.0)])
        match = DiagonalsEvaluator().evaluate(make_context(leading=leading))

        # |-135| is outside (20, 70)
        assert match.confidence == pytest.approx(0.25)
        assert len(match.dynamic_lines) == 1

    def test_strong_diagonals_are_accepted(self):
        leading = leading_analysis([leading_line(30.0, 0.5), leading_line(-60.0, 0.5)])
        match = DiagonalsEvaluator().match(make_context(leading=leading))

        assert match.confidence == pytest.approx(0.5)
        assert all(line.label == "Diagonal" for line in match.dynamic_lines)

    def test_confidence_is_capped(self):
        leading = leading_analysis([leading_line(45.0, 1.0)] * 5)

        assert DiagonalsEvaluator().evaluate(make_context(leading=leading)).confidence == 1.0


class TestRuleRegistry:
    """Tests for the rule enumeration and evaluator registry."""

    def test_every_rule_has_an_evaluator(self):
        evaluators = create_rule_evaluators()

        assert set(evaluators) == set(CompositionRule)
        assert all(evaluators[rule].rule is rule for rule in CompositionRule)

    def test_rules_are_described(self):
        assert CompositionRule.RULE_OF_THIRDS.value == "Rule of Thirds"
        assert all(rule.description for rule in CompositionRule)

    def test_thresholds_are_configurable(self):
        evaluator = SymmetryEvaluator({'symmetry_threshold': 0.9})
        regions = [Rect(50, 100, 40, 40), Rect(210, 100, 40, 80)]

        assert evaluator.match(make_context(regions=regions)) is None


class TestCompositionScorer:
    """Tests for overall scoring."""

    @pytest.fixture
    def scorer(self):
        return CompositionScorer()

    def test_default_score(self, scorer):
        assert scorer.calculate_overall_score([]) == 0.3
        assert scorer.determine_primary_composition([]) is CompositionRule.RULE_OF_THIRDS

    def test_average_with_diversity_bonus(self, scorer):
        matches = [make_match(CompositionRule.FRAMING, 0.5), make_match(CompositionRule.SYMMETRY, 0.7)]

        assert scorer.calculate_overall_score(matches) == pytest.approx(0.8)
        assert scorer.determine_primary_composition(matches) is CompositionRule.SYMMETRY

    def test_score_is_capped(self, scorer):
        matches = [make_match(rule, 0.9) for rule in CompositionRule]
        assert scorer.calculate_overall_score(matches) == 1.0

    def test_first_match_wins_ties(self, scorer):
        matches = [make_match(CompositionRule.DIAGONALS, 0.5), make_match(CompositionRule.FRAMING, 0.5)]
        assert scorer.determine_primary_composition(matches) is CompositionRule.DIAGONALS

    def test_rule_scores(self, scorer):
        scores = scorer.calculate_rule_scores([make_match(CompositionRule.FRAMING, 0.45)])
        assert scores == {"Framing": 0.45}


class TestSuggestionEngine:
    """Tests for adjustment generation."""

    @pytest.fixture
    def engine(self):
        return SuggestionEngine()

    def _adjust(self, engine, matches=(), angle=LEVEL, leading=None, regions=(), size=(300, 300)):
        leading = leading or LeadingLinesAnalysis.empty()
        grid = build_dynamic_grid(size, angle, leading)
        return engine.generate_adjustments(matches, angle, leading, regions, size, grid)

    def test_nothing_to_adjust(self, engine):
        assert self._adjust(engine) == []

    def test_rotation_uses_horizon_angle(self, engine):
        angle = AngleAnalysis(30.0, 5.0, (), (), 0.9, True)
        adjustments = self._adjust(engine, angle=angle)

        assert adjustments[0].adjustment_type is AdjustmentType.ROTATE
        assert adjustments[0].description == "Rotate image by -5.0° to straighten horizon"
        assert adjustments[0].visual_guide is None

    def test_rotation_falls_back_to_dominant_angle(self, engine):
        angle = AngleAnalysis(-3.25, None, (), (), 0.9, True)
        adjustments = self._adjust(engine, angle=angle)

        assert adjustments[0].description == "Rotate image by 3.2° to straighten horizon"

    def test_off_center_subject(self, engine):
        region = Rect(200, 130, 40, 40)
        adjustments = self._adjust(engine, regions=[region])

        assert [a.adjustment_type for a in adjustments] == [AdjustmentType.REFRAME, AdjustmentType.MOVE_SUBJECT]
        assert adjustments[0].visual_guide == region
        assert adjustments[1].visual_guide == Rect(180.0, 80.0, 40.0, 40.0)

    def test_centered_subject_on_thirds(self, engine):
        region = Rect.centered_at(Point(150, 150), 40, 40)
        matches = [make_match(CompositionRule.RULE_OF_THIRDS, 0.3)]

        assert self._adjust(engine, matches=matches, regions=[region]) == []

    def test_weak_lines_suggest_new_angle(self, engine):
        leading = leading_analysis([leading_line(10.0, 0.2)], strong=False)
        adjustments = self._adjust(engine, leading=leading)

        assert [a.adjustment_type for a in adjustments] == [AdjustmentType.CHANGE_ANGLE]
