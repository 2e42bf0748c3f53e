class SnapScalpError(Exception):
    """Base class for all errors raised by snapscalp."""


class PreconditionError(SnapScalpError):
    """A control operation was attempted without its prerequisites."""


class NoRegionConfigured(PreconditionError):
    def __init__(self, message="No capture area set"):
        super().__init__(message)


class MissingCredential(PreconditionError):
    def __init__(self, provider):
        self.provider = provider
        super().__init__(f"Missing API key for {provider}")


class UnsupportedProvider(PreconditionError):
    def __init__(self, provider):
        self.provider = provider
        super().__init__(f"Unsupported LLM provider: {provider}")


class ProviderError(SnapScalpError):
    """Transport or auth failure while talking to an analysis provider."""

    def __init__(self, provider, message):
        self.provider = provider
        super().__init__(f"Analysis failed with {provider}: {message}")


class CaptureError(SnapScalpError):
    pass


class ParseError(SnapScalpError):
    pass
