class TrackerError(Exception):
    """Base class for watch-tracking errors."""


class InvalidUnitKey(TrackerError):
    """A watched unit key is malformed and was rejected before any remote call."""


class CollaboratorUnavailable(TrackerError):
    """The catalog or the persistence API failed or answered non-OK."""


class ConcurrencyRejected(TrackerError):
    """A toggle was attempted while another one is in flight for the same title."""
