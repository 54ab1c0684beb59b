"""Error taxonomy for the memories engine.

Image unavailability is not an error; it is carried as ``Memory.available``.
"""


class MemoriesError(Exception):
    """Base class for memories engine failures that surface to the page."""


class ProvisionError(MemoriesError):
    """The storage bucket is missing or could not be configured."""


class FetchError(MemoriesError):
    """Reading a record store failed; the whole reconciliation pass is lost."""


class UploadError(MemoriesError):
    """The blob upload or a metadata write failed."""
