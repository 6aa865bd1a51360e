class SceneboardError(Exception):
    pass


class ConfigurationError(SceneboardError, RuntimeError):
    """A required setting or credential is missing."""


class InvalidRequestError(SceneboardError, ValueError):
    pass


class GenerationError(SceneboardError, RuntimeError):
    """The hosted generation service failed or returned nothing usable."""

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.details = details


class AssetError(SceneboardError, RuntimeError):
    """An image or video could not be fetched or decoded."""


class ExportError(SceneboardError, RuntimeError):
    pass


class SceneNotFoundError(SceneboardError, LookupError):
    pass


class BusyError(SceneboardError):
    pass
