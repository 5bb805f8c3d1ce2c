"""Error taxonomy for preference and parameter resolution.

Only ConfigNotFound and PreferenceStoreError ever reach a coordinator's
error channel. CredentialCheckFailed and InvalidOverrideValue are raised
and absorbed at the point of detection (logged, then replaced by a safe
default).
"""


class ResolutionError(Exception):
    """Base class for all resolution failures."""

    user_message = "Something went wrong, please try again."


class ConfigNotFound(ResolutionError):
    """A platform or model id is missing from the catalog."""

    user_message = "Configuration error, please refresh."

    def __init__(self, message: str, platform_id: str | None = None, model_id: str | None = None):
        super().__init__(message)
        self.platform_id = platform_id
        self.model_id = model_id


class CatalogLoadError(ConfigNotFound):
    """The catalog file could not be read or failed schema validation."""


class CredentialCheckFailed(ResolutionError):
    """Transport or storage failure while checking credentials for a platform."""

    user_message = "Could not verify API credentials."

    def __init__(self, platform_id: str, cause: Exception | None = None):
        super().__init__(f"Credential check failed for {platform_id}: {cause}")
        self.platform_id = platform_id


class PreferenceStoreError(ResolutionError):
    """Read or write failure in the preference store."""

    user_message = "Couldn't save/load preference, try again."

    def __init__(self, operation: str, scope: str, key: str, cause: Exception | None = None):
        super().__init__(f"Preference store {operation} failed for {scope}:{key}: {cause}")
        self.operation = operation
        self.scope = scope
        self.key = key


class InvalidOverrideValue(ResolutionError):
    """A stored override holds a value the model configuration does not allow."""

    user_message = "Invalid parameter value."

    def __init__(self, param: str, value, allowed=None):
        super().__init__(f"Invalid value {value!r} for {param} (allowed: {allowed})")
        self.param = param
        self.value = value
        self.allowed = allowed


def user_message(exc: BaseException) -> str:
    """Return the user-facing text for an error raised during resolution."""
    if isinstance(exc, ResolutionError):
        return exc.user_message
    return ResolutionError.user_message
