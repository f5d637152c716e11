"""Failure taxonomy shared by the session controller and its adapters."""


class GlanceError(Exception):
    """Base class for playground failures."""


class CollaboratorUnavailable(GlanceError):
    """A backing service could not be reached or rejected the request."""


class ValidationRejected(GlanceError):
    """An input was not acceptable (blank send, no agent). Never surfaced."""


class VoiceEngineFailure(GlanceError):
    """The voice SDK failed to initialize or a call errored."""


class PersistenceLag(GlanceError):
    """A history write failed; the in-memory transcript is ahead of the store."""
