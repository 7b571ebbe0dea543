"""Exception types raised by the classification pipeline."""


class ImageClassifierError(Exception):
    """Base class for all service errors."""

    default_message = "Image classification failed"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)


class ConfigurationError(ImageClassifierError):
    """Raised when the deployment configuration is invalid."""

    default_message = "Invalid service configuration"


class ClientInputError(ImageClassifierError):
    """Raised when the request carries no usable body."""

    default_message = "Send raw image bytes in the POST body (binary)."


class DecodeError(ImageClassifierError):
    """Raised when the request body is not a decodable image."""

    default_message = "Could not decode image."


class InferenceError(ImageClassifierError):
    """Raised when the model cannot be loaded or run."""

    default_message = "Inference failed"


class EmptyOutputError(ImageClassifierError):
    """Raised when the model returns an empty output vector."""

    default_message = "Model returned an empty output vector"
