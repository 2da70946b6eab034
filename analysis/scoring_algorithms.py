#!/usr/bin/env python3
"""
Composition Scoring Algorithms

Turns the accepted rule matches of one analysis into the overall composition
score and the primary composition rule.

"""

from typing import Dict, List, Optional, Any, Sequence
import logging

from .rule_evaluators import CompositionMatch, CompositionRule

logger = logging.getLogger(__name__)


class CompositionScorer:
    """
    Main composition scoring engine.

    The overall score is the mean confidence of the accepted matches plus a
    diversity bonus per match, capped at 1.0.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize composition scorer.

        Args:
            config: Configuration dictionary for scoring parameters

        """

        self.config = {**self._get_default_config(), **(config or {})}

        self.default_score = self.config['default_score']
        self.diversity_bonus = self.config['diversity_bonus']

        logger.info("CompositionScorer initialized")

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default scoring configuration."""

        return {
            'default_score': 0.3,
            'diversity_bonus': 0.1,
            'default_rule': CompositionRule.RULE_OF_THIRDS
        }

    def calculate_overall_score(self, matches: Sequence[CompositionMatch]) -> float:
        """
        Calculate the overall composition score.

        Args:
            matches: Accepted rule matches

        Returns:
            Score between 0 and 1 (the default score when nothing matched)
        """

        if not matches:
            return self.default_score

        average_confidence = sum(match.confidence for match in matches) / len(matches)

        # Bonus for multiple composition rules
        bonus = len(matches) * self.diversity_bonus

        return max(0.0, min(1.0, average_confidence + bonus))

    def determine_primary_composition(self, matches: Sequence[CompositionMatch]) -> CompositionRule:
        """Highest-confidence rule; the earliest match wins ties."""

        if not matches:
            return self.config['default_rule']

        return max(matches, key=lambda match: match.confidence).rule

    def calculate_rule_scores(self, matches: Sequence[CompositionMatch]) -> Dict[str, float]:
        """Confidence per accepted rule, keyed by rule name."""

        return {match.rule.value: match.confidence for match in matches}

    def rank_matches(self, matches: Sequence[CompositionMatch]) -> List[CompositionMatch]:
        return sorted(matches, key=lambda match: match.confidence, reverse=True)
