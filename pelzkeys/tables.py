"""In-memory tables of data keys and key-server certificates."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Generic, Iterator, List, TypeVar, Union

from pelzkeys.charbuf import compare, secure_clear

log = logging.getLogger(__name__)

Identifier = Union[bytes, bytearray, memoryview, str]

_SIZE_T = 8
DEFAULT_MAX_MEM_SIZE = 1_000_000


class TableType(Enum):
    """The kinds of table the service keeps."""

    KEY = "key"
    SERVER = "server"


class TableError(Exception):
    """Base class for table failures."""


class NoMatchError(TableError, KeyError):
    """Raised when an identifier is not present in a table."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "ID not found"


class TableMemoryError(TableError):
    """Raised when a table has reached its memory limit."""


class RetrieveError(TableError):
    """Raised when data cannot be obtained from the unsealed data store."""


def _to_bytes(value: Identifier) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


class UnsealedStore:
    """Holds unsealed data blobs, each handed out once by its handle."""

    def __init__(self) -> None:
        self._data: Dict[int, bytes] = {}
        self._handles = itertools.count(1)

    def put(self, data: bytes) -> int:
        """Store ``data`` and return the handle that retrieves it."""
        handle = next(self._handles)
        self._data[handle] = bytes(data)
        return handle

    def retrieve(self, handle: int) -> bytes:
        """Remove and return the data stored under ``handle``."""
        data = self._data.pop(handle, b"")
        if not data:
            raise RetrieveError(f"no unsealed data for handle {handle}")
        return data

    def __len__(self) -> int:
        return len(self._data)


V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    entry_id: bytes
    value: V


class Table(Generic[V]):
    """An ordered table of entries keyed by byte identifiers."""

    table_type: TableType

    def __init__(self, max_mem_size: int = DEFAULT_MAX_MEM_SIZE) -> None:
        self.max_mem_size = max_mem_size
        self._entries: List[_Entry[V]] = []
        self._mem_size = 0

    def _entry_size(self, entry: _Entry[V]) -> int:
        raise NotImplementedError

    def _release(self, entry: _Entry[V]) -> None:
        """Drop any resources an entry holds; nothing by default."""

    def _check_capacity(self) -> None:
        if self._mem_size >= self.max_mem_size:
            log.error("%s table memory allocation greater than limit", self.table_type.value)
            raise TableMemoryError("table memory allocation greater than specified limit")

    def _append(self, entry: _Entry[V]) -> None:
        self._entries.append(entry)
        self._mem_size += self._entry_size(entry)

    def lookup(self, entry_id: Identifier) -> int:
        """Return the position of the first entry with ``entry_id``."""
        wanted = _to_bytes(entry_id)
        for index, entry in enumerate(self._entries):
            if compare(wanted, entry.entry_id) == 0:
                return index
        raise NoMatchError("ID not found")

    def _get(self, entry_id: Identifier) -> V:
        return self._entries[self.lookup(entry_id)].value

    def delete(self, entry_id: Identifier) -> None:
        """Remove the first entry with ``entry_id``."""
        try:
            index = self.lookup(entry_id)
        except NoMatchError:
            log.error("ID not found.")
            raise
        entry = self._entries.pop(index)
        self._mem_size -= self._entry_size(entry)
        self._release(entry)
        if self._mem_size == 0:
            self._entries.clear()

    def destroy(self) -> None:
        """Remove every entry and reset the table."""
        log.debug("Table Destroy Function Starting")
        for entry in self._entries:
            self._release(entry)
        self._entries.clear()
        self._mem_size = 0
        log.debug("Table Destroy Function Complete")

    def ids(self) -> List[bytes]:
        """Return the identifiers of all entries, in table order."""
        return [entry.entry_id for entry in self._entries]

    def count(self) -> int:
        """Return the number of entries."""
        return len(self._entries)

    def mem_size(self) -> int:
        """Return the accounted memory use of the table."""
        return self._mem_size

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.ids())

    def __contains__(self, entry_id: object) -> bool:
        if not isinstance(entry_id, (bytes, bytearray, memoryview, str)):
            return False
        try:
            self.lookup(entry_id)
        except NoMatchError:
            return False
        return True


class KeyTable(Table[bytearray]):
    """Table of data keys indexed by key identifier."""

    table_type = TableType.KEY

    def _entry_size(self, entry: _Entry[bytearray]) -> int:
        return len(entry.value) + len(entry.entry_id) + 2 * _SIZE_T

    def _release(self, entry: _Entry[bytearray]) -> None:
        secure_clear(entry.value)

    def add_key(self, key_id: Identifier, key: bytes) -> None:
        """Add a copy of ``key`` under ``key_id``."""
        self._check_capacity()
        self._append(_Entry(_to_bytes(key_id), bytearray(key)))
        log.info("Key Added")

    def add_from_handle(self, key_id: Identifier, handle: int, store: UnsealedStore) -> None:
        """Add the key held in ``store`` under ``handle``."""
        self._check_capacity()
        try:
            data = store.retrieve(handle)
        except RetrieveError:
            log.error("Failure to retrieve data from unseal table.")
            raise
        self.add_key(key_id, data)

    def get_key(self, key_id: Identifier) -> bytes:
        """Return a copy of the key stored under ``key_id``."""
        return bytes(self._get(key_id))


class ServerTable(Table[bytes]):
    """Table of key-server certificates indexed by server name."""

    table_type = TableType.SERVER

    def _entry_size(self, entry: _Entry[bytes]) -> int:
        return len(entry.entry_id) + _SIZE_T + len(entry.value)

    def add_cert(self, server_id: Identifier, cert_der: bytes) -> None:
        """Add a DER-encoded certificate for ``server_id``."""
        self._check_capacity()
        if not cert_der:
            raise TableError("empty certificate")
        self._append(_Entry(_to_bytes(server_id), bytes(cert_der)))
        log.info("Cert Added")

    def get_cert(self, server_id: Identifier) -> bytes:
        """Return the DER certificate stored for ``server_id``."""
        return self._get(server_id)