"""Exception hierarchy for Narrative Director.

    NarrativeDirectorError
    ├── GenerationServiceError (transport or HTTP failure talking to the model)
    │   └── GenerationTimeoutError (call exceeded its timeout)
    ├── MalformedContentError (model output could not be parsed)
    ├── PrerequisiteError (storylet prerequisite expression is invalid)
    ├── EffectError (effect could not be parsed or applied)
    │   └── EffectRejectedError (post-generation gate refused the effect)
    └── StoreError (a backing store failed)

Terminal validation failures are not exceptions: the director reports them
as an OrchestrationResult with action ``validation_failed``.
"""


class NarrativeDirectorError(Exception):
    """Base exception for all Narrative Director errors."""


class GenerationServiceError(NarrativeDirectorError):
    """Raised when the generation service cannot produce a response."""


class GenerationTimeoutError(GenerationServiceError):
    """Raised when a generation call exceeds its timeout."""


class MalformedContentError(NarrativeDirectorError):
    """Raised when generated text cannot be turned into structured content."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class PrerequisiteError(NarrativeDirectorError):
    """Raised when a prerequisite expression cannot be parsed."""


class EffectError(NarrativeDirectorError):
    """Raised when an effect cannot be parsed or applied."""


class EffectRejectedError(EffectError):
    """Raised when the post-generation gate refuses an effect."""

    def __init__(self, effect: object, reason: str):
        super().__init__(f"{effect!r} rejected: {reason}")
        self.effect = effect
        self.reason = reason


class StoreError(NarrativeDirectorError):
    """Raised when a backing store read or write fails."""
