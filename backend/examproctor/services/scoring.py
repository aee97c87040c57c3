"""
Scoring and integrity-risk computation run once per session at submission.

The risk figure is a deliberately crude heuristic: a linear function of how many
violations the client reported. It exists to prioritise human review
(``Result.admin_status``) and never disqualifies anyone by itself; the only
automatic enforcement is the separate ``max_violations`` auto-submit gate.
Both the risk model and the marking rule are pluggable.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Protocol


@dataclass(frozen=True)
class AnswerKeyEntry:
    question_id: str
    correct_option: Optional[str]
    marks: float = 1.0


class AnsweredQuestion(Protocol):
    question_id: str
    selected_option: Optional[str]


@dataclass(frozen=True)
class RiskAssessment:
    risk_score: float
    confidence_score: float


@dataclass(frozen=True)
class ScoreCard:
    total_answered: int
    correct_answers: int
    score: float
    violations_count: int
    risk_score: float
    confidence_score: float


class RiskStrategy(ABC):
    @abstractmethod
    def assess(self, violation_count: int) -> RiskAssessment:
        ...


class LinearRiskStrategy(RiskStrategy):
    """risk = min(100, violations / normalizer * 100), confidence = 100 - risk"""

    def __init__(self, normalizer: int = 10):
        if normalizer <= 0:
            raise ValueError("normalizer must be positive")
        self.normalizer = normalizer

    def assess(self, violation_count: int) -> RiskAssessment:
        risk = min(100.0, violation_count * 100 / self.normalizer)
        risk = round(risk, 2)
        return RiskAssessment(risk_score=risk, confidence_score=max(0.0, round(100.0 - risk, 2)))


class MarkingScheme(ABC):
    """Marks awarded for one answered question"""

    @abstractmethod
    def award(self, entry: AnswerKeyEntry, selected_option: str) -> float:
        ...


class CorrectAnswerMarking(MarkingScheme):
    """Full marks for the correct option, nothing otherwise"""

    def award(self, entry: AnswerKeyEntry, selected_option: str) -> float:
        return entry.marks if selected_option == entry.correct_option else 0.0


class NegativeMarking(MarkingScheme):
    """Deducts ``penalty`` x question marks for each wrong answer"""

    def __init__(self, penalty: float):
        self.penalty = penalty

    def award(self, entry: AnswerKeyEntry, selected_option: str) -> float:
        if selected_option == entry.correct_option:
            return entry.marks
        return -entry.marks * self.penalty


def marking_scheme_for(negative_marking: float) -> MarkingScheme:
    if negative_marking and negative_marking > 0:
        return NegativeMarking(negative_marking)
    return CorrectAnswerMarking()


class ScoringEngine:
    def __init__(self, risk_strategy: Optional[RiskStrategy] = None):
        self.risk_strategy = risk_strategy or LinearRiskStrategy()

    def score(
        self,
        responses: Iterable[AnsweredQuestion],
        answer_key: Mapping[str, AnswerKeyEntry],
        violation_count: int,
        marking: Optional[MarkingScheme] = None,
    ) -> ScoreCard:
        marking = marking or CorrectAnswerMarking()
        total_answered = 0
        correct_answers = 0
        score = 0.0

        for response in responses:
            if response.selected_option is None:
                continue
            total_answered += 1

            entry = answer_key.get(response.question_id)
            if entry is None:
                continue
            if response.selected_option == entry.correct_option:
                correct_answers += 1
            score += marking.award(entry, response.selected_option)

        risk = self.risk_strategy.assess(violation_count)
        return ScoreCard(
            total_answered=total_answered,
            correct_answers=correct_answers,
            score=round(score, 2),
            violations_count=violation_count,
            risk_score=risk.risk_score,
            confidence_score=risk.confidence_score,
        )
