"""Exceptions for hbx."""


class HbxError(Exception):
    """Base class for all hbx errors."""


class NotFound(HbxError, FileNotFoundError):
    """A path that must exist does not."""


class InvalidPath(HbxError, ValueError):
    """A path has no usable final component (``/``, ``.``, ``..``)."""


class NotADirectory(HbxError, NotADirectoryError):
    """A restore destination is not a directory."""


class CrossDeviceError(HbxError, OSError):
    """A hard link was requested across two filesystems.

    The blob directory must live on the same volume as the files being
    added or restored.
    """


class UnknownItem(HbxError, LookupError):
    """No item with the requested name exists in the store."""

    def __init__(self, name: str):
        super().__init__(f"Unknown item: {name}")
        self.name = name


class AuthenticationFailed(HbxError):
    """The remote host rejected our credentials."""


class RemoteNotInstalled(HbxError):
    """The hbx executable is missing on the remote host."""


class RemoteInfoError(HbxError):
    """``hbx info`` on the remote host returned an unusable manifest."""


class SerializationError(HbxError, ValueError):
    """A config file does not contain a valid item list."""
