"""
Custom exceptions for the RFP Cloud service.
"""


class RfpCloudError(Exception):
    """Base class for every error raised by this package."""
    pass


class ConfigurationError(RfpCloudError):
    """A required setting is missing or malformed."""
    pass


class NotFoundError(RfpCloudError):
    """A requested record does not exist."""
    def __init__(self, message: str, resource: str = "record"):
        super().__init__(message)
        self.resource = resource
        self.message = message


class InvalidRequestError(RfpCloudError):
    """Request content failed validation."""
    pass


class ConflictError(RfpCloudError):
    """A uniqueness constraint would be violated."""
    pass


class LLMGenerationError(RfpCloudError):
    """The LLM completion call failed or timed out."""
    def __init__(self, message: str, original_exception: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception

    def __str__(self):
        if self.original_exception:
            return f"{self.message} (Caused by: {type(self.original_exception).__name__}: {self.original_exception})"
        return self.message


class LLMResponseDecodeError(RfpCloudError):
    """The LLM answered, but not with JSON of the expected shape."""
    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.message = message
        self.raw_response = raw_response


class StorageUploadError(RfpCloudError):
    """Writing an object to object storage failed."""
    def __init__(self, message: str, key: str = None):
        super().__init__(message)
        self.message = message
        self.key = key


class MailDeliveryError(RfpCloudError):
    """The outbound mail provider rejected or failed a send."""
    pass


class InboundPayloadError(RfpCloudError):
    """An inbound webhook payload could not be parsed at all."""
    pass
