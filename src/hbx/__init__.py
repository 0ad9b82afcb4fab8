from .store import Store
from .config import StoreConfig
from .node import Node, File, Symlink, Directory
from .sync import Address, SyncPlan
from .remote import RemoteAgent, SSHAgent
from .exceptions import (
    HbxError, NotFound, InvalidPath, NotADirectory, CrossDeviceError, UnknownItem,
    AuthenticationFailed, RemoteNotInstalled, RemoteInfoError, SerializationError,
)

__version__ = "0.1.0"

__all__ = [
    "Store", "StoreConfig", "Node", "File", "Symlink", "Directory",
    "Address", "SyncPlan", "RemoteAgent", "SSHAgent",
    "HbxError", "NotFound", "InvalidPath", "NotADirectory", "CrossDeviceError",
    "UnknownItem", "AuthenticationFailed", "RemoteNotInstalled", "RemoteInfoError",
    "SerializationError",
]
