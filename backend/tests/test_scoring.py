"""
Tests for the scoring engine and its pluggable parts
"""
from dataclasses import dataclass
from typing import Optional

import pytest

from examproctor.services.scoring import (
    AnswerKeyEntry,
    CorrectAnswerMarking,
    LinearRiskStrategy,
    NegativeMarking,
    RiskAssessment,
    RiskStrategy,
    ScoringEngine,
    marking_scheme_for,
)


@dataclass
class Answer:
    question_id: str
    selected_option: Optional[str]


def answer_key(count=20, marks=1.0):
    return {
        f"q{i}": AnswerKeyEntry(question_id=f"q{i}", correct_option="A", marks=marks)
        for i in range(1, count + 1)
    }


class TestLinearRiskStrategy:
    """risk = violations / normalizer * 100, capped"""

    @pytest.mark.parametrize("violations,risk,confidence", [
        (0, 0.0, 100.0),
        (3, 30.0, 70.0),
        (10, 100.0, 0.0),
        (25, 100.0, 0.0),
    ])
    def test_default_normalizer(self, violations, risk, confidence):
        assessment = LinearRiskStrategy().assess(violations)
        assert assessment.risk_score == risk
        assert assessment.confidence_score == confidence

    def test_custom_normalizer(self):
        assessment = LinearRiskStrategy(normalizer=4).assess(1)
        assert assessment.risk_score == 25.0
        assert assessment.confidence_score == 75.0

    def test_rejects_zero_normalizer(self):
        with pytest.raises(ValueError):
            LinearRiskStrategy(normalizer=0)


class TestScoringEngine:
    """Score card computation"""

    def test_eighteen_of_twenty_with_three_violations(self):
        responses = [Answer(f"q{i}", "A") for i in range(1, 19)] + [Answer("q19", "B"), Answer("q20", "C")]

        card = ScoringEngine().score(responses, answer_key(), violation_count=3)

        assert card.total_answered == 20
        assert card.correct_answers == 18
        assert card.score == 18
        assert card.violations_count == 3
        assert card.risk_score == 30
        assert card.confidence_score == 70

    def test_cleared_answers_do_not_count_as_answered(self):
        responses = [Answer("q1", "A"), Answer("q2", None)]

        card = ScoringEngine().score(responses, answer_key(), violation_count=0)

        assert card.total_answered == 1
        assert card.correct_answers == 1

    def test_unknown_question_is_answered_but_unscored(self):
        card = ScoringEngine().score([Answer("ghost", "A")], answer_key(), violation_count=0)
        assert card.total_answered == 1
        assert card.correct_answers == 0
        assert card.score == 0

    def test_question_marks_are_summed(self):
        responses = [Answer("q1", "A"), Answer("q2", "A")]
        card = ScoringEngine().score(responses, answer_key(marks=2.5), violation_count=0)
        assert card.score == 5.0

    def test_negative_marking(self):
        responses = [Answer("q1", "A"), Answer("q2", "B"), Answer("q3", "C")]

        card = ScoringEngine().score(responses, answer_key(), 0, marking=NegativeMarking(0.25))

        assert card.correct_answers == 1
        assert card.score == 0.5

    def test_substituted_risk_strategy(self):
        class Strict(RiskStrategy):
            def assess(self, violation_count):
                return RiskAssessment(risk_score=100.0 if violation_count else 0.0,
                                      confidence_score=0.0 if violation_count else 100.0)

        card = ScoringEngine(Strict()).score([], answer_key(), violation_count=1)
        assert card.risk_score == 100.0
        assert card.confidence_score == 0.0


class TestMarkingSchemeFor:
    def test_default_is_correct_answer_marking(self):
        assert isinstance(marking_scheme_for(0), CorrectAnswerMarking)

    def test_fraction_enables_negative_marking(self):
        scheme = marking_scheme_for(0.5)
        assert isinstance(scheme, NegativeMarking)
        assert scheme.penalty == 0.5
