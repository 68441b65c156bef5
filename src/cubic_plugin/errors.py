"""Error types raised by cubic-plugin."""


class CubicPluginError(Exception):
    """Base error carrying a machine-readable code and a retry hint."""

    code = "INSTALL_ERROR"
    retryable = False

    def __init__(self, message: str, code: str | None = None, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable


class ConfigurationError(CubicPluginError):
    """Invalid target or method selection. Raised before any side effect."""

    code = "INVALID_CONFIGURATION"
    retryable = False


class SourceFetchError(CubicPluginError):
    """The plugin bundle could not be located or fetched."""

    code = "SOURCE_FETCH_FAILED"
    retryable = True


class AuthError(CubicPluginError):
    """No API key could be acquired."""

    code = "AUTH_FAILED"
    retryable = True
