"""Mapping from the classifier's raw score to a labelled diagnosis."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import StrEnum

from diagnosix.ml.errors import InvalidModelOutput

MALIGNANT_THRESHOLD: float = 0.5


class Diagnosis(StrEnum):
    BENIGN = "Benign"
    MALIGNANT = "Malignant"


# Model output index order.
CLASS_NAMES: tuple[Diagnosis, ...] = (Diagnosis.BENIGN, Diagnosis.MALIGNANT)


@dataclass(frozen=True)
class DiagnosisResult:
    """A single diagnosis with its confidence percentage (0-100)."""

    label: Diagnosis
    confidence: float
    raw_score: float


def interpret(score: float) -> DiagnosisResult:
    """Label a raw malignancy score.

    Scores above 0.5 are Malignant; 0.5 itself is Benign. Scores outside
    [0, 1] are clamped first, so confidence always lies in [0, 100].
    ``raw_score`` keeps the unclamped value.

    Raises:
        InvalidModelOutput: If the score is NaN.
    """
    if math.isnan(score):
        raise InvalidModelOutput("The model returned a NaN score")

    clamped = min(max(score, 0.0), 1.0)
    if clamped > MALIGNANT_THRESHOLD:
        label = Diagnosis.MALIGNANT
        confidence = clamped * 100
    else:
        label = Diagnosis.BENIGN
        confidence = (1 - clamped) * 100

    return DiagnosisResult(label=label, confidence=round(confidence, 2), raw_score=score)
