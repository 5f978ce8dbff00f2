"""Error taxonomy for image transformation requests.

Every error carries the HTTP status it maps to and a public message that is
safe to return to the client. The full diagnostic stays in ``str(error)``
and is only logged.
"""

from typing import Optional


class ImageProcessingError(Exception):
    """Base class for all request failures."""

    status_code = 500
    public_message = "Something went wrong on our side."

    def __init__(self, message: str, public_message: Optional[str] = None):
        super().__init__(message)
        if public_message is not None:
            self.public_message = public_message


class InvalidRequest(ImageProcessingError):
    """Raised when request parameters are missing or malformed."""

    status_code = 400
    public_message = "The provided parameters within the query string aren't valid."


class ResourceUnavailable(ImageProcessingError):
    """Raised when an image cannot be acquired."""

    status_code = 502
    public_message = "The image requested to be processed could not be downloaded."


class InvalidResourceUri(ResourceUnavailable):
    """Raised when an image address cannot be resolved."""

    status_code = 400

    def __init__(self, address: str):
        super().__init__(
            f"The provided resource uri is not valid: {address!r}",
            public_message=f"The provided resource URI is not valid: '{address}'",
        )
        self.address = address


class FetchTimedOut(ResourceUnavailable):
    """Raised when downloading an image times out."""

    status_code = 400
    public_message = "Downloading the image requested to be processed timed out."


class ClientErrorStatus(ResourceUnavailable):
    """Raised when the upstream answers with a 4xx status."""

    def __init__(self, status: int, address: str):
        super().__init__(
            f"Received error response {status} while downloading {address!r}",
            public_message=(
                f"Received status code '{status}' while attempting to download "
                f"the image that has to be processed: '{address}'"
            ),
        )
        self.status_code = status
        self.address = address


class ResourceNotFound(ResourceUnavailable):
    """Raised when a local image does not exist."""

    status_code = 404

    def __init__(self, address: str):
        super().__init__(
            f"Image not found: {address!r}",
            public_message=f"The requested image was not found: '{address}'",
        )
        self.address = address


class ImageTooLarge(ResourceUnavailable):
    """Raised when a fetched image exceeds the configured size limit."""

    status_code = 413
    public_message = "The image requested to be processed is too large."


class FetchFailed(ResourceUnavailable):
    """Raised when downloading an image fails for any other reason."""


class DecodeFailed(ImageProcessingError):
    """Raised when the engine cannot decode an image."""

    status_code = 400
    public_message = "The image that was requested to be processed cannot be opened."


class EncodeFailed(ImageProcessingError):
    """Raised when the engine cannot encode the result."""

    status_code = 400
    public_message = "The processed image cannot be encoded with the requested parameters."


class ProcessingFailed(ImageProcessingError):
    """Raised when a transformation step fails after decoding."""


class WorkerDispatchFailed(ImageProcessingError):
    """Raised when the compute pool cannot run or return a job."""
