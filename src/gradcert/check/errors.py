from __future__ import annotations


class GradientCheckError(Exception):
    """Base class for errors that abort a gradient check run."""


class ConfigurationError(GradientCheckError):
    """
    The model or tolerance setup cannot yield a deterministic comparison
    (dropout, stateful updater, unsupported input shape, bad tolerances).
    Raised before any parameter is perturbed.
    """


class ShapeMismatch(GradientCheckError):
    """
    The model's gradient layout and its parameter layout disagree. This is a
    structural bug in the model, never a numeric finding.
    """
