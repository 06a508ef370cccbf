"""
Live Coach Errors

Exception types raised by the live coaching services.
"""


class CoachError(Exception):
    """Base class for live coach errors."""


class TrainingModuleNotFound(CoachError):
    """Raised when a module slug does not resolve to a training module."""

    def __init__(self, slug: str):
        super().__init__(f"Training module '{slug}' was not found")
        self.slug = slug


class LLMUnavailableError(CoachError):
    """Raised when both the primary and the fallback AI provider failed."""


class FeedbackServiceError(CoachError):
    """Raised when a feedback log could not be written."""


class ChannelUnavailableError(CoachError):
    """Raised when a vision or speech channel has been disabled."""

    def __init__(self, channel: str, reason: str):
        super().__init__(f"{channel} channel unavailable: {reason}")
        self.channel = channel
        self.reason = reason
