from .storage_interface import SessionStateStore, StorageConfig, StorageError
from .file_storage import FileSessionStore
from .sqlite_storage import SQLiteSessionStore
from .storage_factory import StorageFactory
