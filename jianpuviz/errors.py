"""Exception types raised by jianpuviz.

Recoverable problems (a malformed token, an unknown key signature) are never
raised; they are logged and skipped. The exceptions below cover failures the
caller has to report to the user.
"""


class JianpuError(Exception):
    """Base class for every error raised by this package."""


class OutOfRangeKey(JianpuError, IndexError):
    """A key index outside the fixed key catalog was requested."""

    def __init__(self, index: int, catalog_size: int) -> None:
        super().__init__(f"Key index {index} is outside the catalog (0–{catalog_size - 1}).")
        self.index = index


class ScoreReadError(JianpuError, ValueError):
    """A score file could not be decoded into a source score."""


class MissingTitleError(JianpuError, ValueError):
    """A document was saved without a title."""


class StorageError(JianpuError, OSError):
    """The melody library could not be reached or updated."""


class CaptureDeviceError(JianpuError, OSError):
    """The audio capture source could not be opened or read."""
