"""Failures raised by the remote retrieval client."""


class DinoRetrievalError(Exception):
    """Base class for errors talking to the retrieval backend."""


class ConnectionFailure(DinoRetrievalError):
    """The backend Space could not be reached."""


class ResourceLoadFailure(DinoRetrievalError):
    """The configuration-load operation rejected or errored."""


class ExampleRefreshFailure(DinoRetrievalError):
    """The example-sampling operation rejected or errored."""


class SearchFailure(DinoRetrievalError):
    """The image-query operation rejected or errored."""
