"""
Shared exceptions for AI service modules.
"""


class AIServiceError(Exception):
    """Raised when AI service operations fail."""

    pass


class CompletionFailed(AIServiceError):
    """Raised when the completion endpoint can't produce an answer."""

    pass


class AggregationUnparsable(AIServiceError):
    """Raised when the final aggregation was asked for JSON but returned something else."""

    def __init__(self, raw: str):
        self.raw = raw
        super().__init__("Model returned non-JSON output in the final aggregation.")
