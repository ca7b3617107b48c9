"""Exception hierarchy for ClearCut.

Remote-call failures (configuration, remote processing, transport) are caught
by the orchestrator and turned into the item's `error` status. The remaining
errors are raised to the caller of the orchestrator operation.
"""


class ClearCutError(Exception):
    """Base class. `message` is always human-readable and shown to the user."""

    default_message = "Processing failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(ClearCutError):
    """The remote service credential is missing or unusable."""

    default_message = "API key is missing. Please check your environment configuration."


class RemoteProcessingError(ClearCutError):
    """The remote service answered but returned no usable image."""

    default_message = "No image data found in the response."


class TransportError(ClearCutError):
    """The remote service could not be reached or rejected the request."""

    default_message = "Failed to reach the background removal service."


class InvalidUploadError(ClearCutError):
    default_message = "File is not a readable image."


class BatchInProgressError(ClearCutError):
    default_message = "A batch is already being processed."


class ItemNotFoundError(ClearCutError):
    default_message = "No such item."


class ItemNotReadyError(ClearCutError):
    default_message = "Item has no processed result yet."
