class CountryCacheError(Exception):
    """Base class for errors raised by the countries app."""


class SourceUnavailable(CountryCacheError):
    """An external data source timed out, failed or returned garbage."""

    def __init__(self, source, reason, detail=""):
        self.source = source
        self.reason = reason
        self.detail = detail
        super().__init__(f"Could not fetch data from {source} ({reason}): {detail}")


class ValidationSkip(CountryCacheError):
    """A single country descriptor is unusable and is left out of the batch."""


class CountryNotFound(CountryCacheError):
    def __init__(self, name):
        self.name = name
        super().__init__(f"Country not found: {name}")


class StorageFailure(CountryCacheError):
    """The database transaction failed and was rolled back."""


class RefreshInProgress(CountryCacheError):
    pass
