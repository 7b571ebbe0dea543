import logging
from dataclasses import dataclass

import numpy as np
import torch

from image_classifier.config import OutputKind
from image_classifier.errors import ConfigurationError, EmptyOutputError, InferenceError

logger = logging.getLogger(__name__)

# Tolerances for treating a raw output vector as an existing distribution
ENTRY_TOLERANCE = 0.001
SUM_TOLERANCE = 0.05


@dataclass(frozen=True)
class TopPrediction:
    index: int
    confidence: float


def looks_like_distribution(scores):
    """Heuristic: every entry within [0, 1] (± noise) and the sum close to 1."""
    in_range = bool(
        ((scores >= -ENTRY_TOLERANCE) & (scores <= 1.0 + ENTRY_TOLERANCE)).all()
    )
    return in_range and abs(float(scores.sum()) - 1.0) < SUM_TOLERANCE


def softmax(scores):
    """Numerically stable softmax over a 1-D tensor."""
    exps = torch.exp(scores - scores.max())
    return exps / exps.sum()


def to_probabilities(raw_output, output_kind=OutputKind.AUTO):
    """Return the raw model output as a 1-D float64 probability vector."""
    scores = torch.as_tensor(raw_output, dtype=torch.float64).flatten()
    if scores.numel() == 0:
        raise EmptyOutputError()
    if not bool(torch.isfinite(scores).all()):
        raise InferenceError("Model output contains non-finite values")

    if output_kind is OutputKind.PROBABILITIES:
        return scores
    if output_kind is OutputKind.AUTO and looks_like_distribution(scores):
        return scores
    logger.debug(f"Applying softmax to {scores.numel()} raw scores")
    return softmax(scores)


def top1(probabilities):
    """Highest-scoring entry; ties resolve to the lowest index."""
    if probabilities.numel() == 0:
        raise EmptyOutputError()
    # argmax returns the first maximal index
    index = int(torch.argmax(probabilities))
    return TopPrediction(index=index, confidence=float(probabilities[index]))


def _is_single_precision(raw_output):
    if isinstance(raw_output, torch.Tensor):
        return raw_output.dtype == torch.float32
    return getattr(raw_output, "dtype", None) == np.float32


def decode_output(raw_output, output_kind=OutputKind.AUTO):
    probabilities = to_probabilities(raw_output, output_kind)
    top = top1(probabilities)
    if _is_single_precision(raw_output):
        # report the shortest float32 form, e.g. 0.97 rather than 0.9700000286102295
        confidence = float(np.format_float_positional(np.float32(top.confidence)))
        top = TopPrediction(index=top.index, confidence=confidence)
    return probabilities, top


class LabelSet:
    """Ordered, read-only class names; index ``i`` names class ``i``."""

    def __init__(self, labels):
        self._labels = tuple(labels)

    def __len__(self):
        return len(self._labels)

    def __getitem__(self, index):
        return self._labels[index]

    def resolve(self, index):
        if 0 <= index < len(self._labels):
            return self._labels[index]
        return f"class_{index}"

    @classmethod
    def from_file(cls, path):
        try:
            with open(path, encoding="utf-8") as f:
                labels = [line.strip() for line in f.readlines()]
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Could not read labels file {path}: {e}") from e
        logger.info(f"Loaded {len(labels)} labels from {path}")
        return cls(labels)
