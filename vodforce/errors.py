class VodforceError(Exception):
    pass


class InvalidInput(VodforceError, ValueError):
    """Rejected before any request is made: bad login, range or timestamp."""


class HintUnavailable(VodforceError):
    """A tracker site or the GQL endpoint could not provide a timestamp."""


class PlaylistUnavailable(VodforceError):
    """A playlist could not be downloaded for fixing."""
