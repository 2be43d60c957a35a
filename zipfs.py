"""Read-only, in-memory filesystem over the members of a zip archive.

The whole archive is decompressed once at construction time into a lookup
table keyed by normalized path. Lookups never touch the archive again, so a
ZipFileSystem can be shared freely between threads.
"""

import io
import logging
import mimetypes
import stat
import types
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import BinaryIO, Callable, Iterable, Mapping

log = logging.getLogger("zipserve")

INDEX_NAME = "index.html"


@dataclass(frozen=True)
class FileInfo:
    """Metadata about an archive member (file or directory)."""
    name: str
    is_dir: bool
    size: int = 0
    mtime: datetime = datetime(1980, 1, 1, tzinfo=timezone.utc)
    mode: int = stat.S_IFREG | 0o644
    content_type: str = field(default="application/octet-stream", compare=False)


# Phony directory returned for "/" so a file server can go on to look for
# the root index.html instead of failing on the root itself.
ROOT_INFO = FileInfo(
    name="",
    is_dir=True,
    mtime=datetime(1970, 1, 1, tzinfo=timezone.utc),
    mode=stat.S_IFDIR | 0o755,
)


class BackendError(Exception):
    """Base error for zip filesystem operations."""
    pass


class DecodeError(BackendError):
    """An archive member could not be opened or fully read."""

    def __init__(self, name: str, cause: BaseException, action: str = "reading"):
        super().__init__(f"error {action} file {name}: {cause}")
        self.name = name
        self.cause = cause


class NotFoundError(BackendError, FileNotFoundError):
    """Resource does not exist."""
    pass


@dataclass(frozen=True)
class Options:
    """Construction-time settings for a ZipFileSystem.

    serve_index_for_missing: answer requests for nonexistent paths with the
    content of the top-level index.html (single-page applications).
    """
    serve_index_for_missing: bool = False


@dataclass(frozen=True)
class Member:
    """One archive member as seen by the loader: name, metadata, opener."""
    name: str
    info: FileInfo
    open: Callable[[], BinaryIO]


@dataclass(frozen=True)
class Entry:
    content: bytes
    info: FileInfo


def _normalize(path: str) -> str:
    """Strip leading and trailing separators; nothing else is rewritten."""
    return path.strip("/")


def guess_type(name: str) -> str:
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


def build_table(members: Iterable[Member]) -> Mapping[str, Entry]:
    """Read every member into memory and index it by normalized name.

    Raises DecodeError for the first member that cannot be opened or read;
    no table is returned in that case.
    """
    files: dict[str, Entry] = {}
    for member in members:
        try:
            stream = member.open()
        except Exception as e:
            raise DecodeError(member.name, e, "opening") from e

        with stream:
            try:
                content = stream.read()
            except Exception as e:
                raise DecodeError(member.name, e, "reading") from e

        # Directories are stored with a trailing slash in the archive, while
        # an HTTP server asks for them without one.
        key = _normalize(member.name)
        if key in files:
            log.debug("Duplicate entry %r replaces earlier one", member.name)
        # Malformed archives are not rejected: the last duplicate wins.
        files[key] = Entry(content=content, info=member.info)
        log.debug("Loaded %r (%d bytes)", key, len(content))

    return types.MappingProxyType(files)


class ZipResource(io.BytesIO):
    """Handle returned by ZipFileSystem.open.

    A read-only, seekable view over one entry's content that also answers
    stat() and readdir(). Directory listings are always empty so the
    archive layout is never exposed.
    """

    def __init__(self, content: bytes, info: FileInfo):
        super().__init__(content)
        self.info = info

    def stat(self) -> FileInfo:
        return self.info

    def readdir(self, count: int = -1) -> list[FileInfo]:
        return []

    def writable(self) -> bool:
        return False

    def write(self, b):
        raise io.UnsupportedOperation("write")

    def writelines(self, lines):
        raise io.UnsupportedOperation("write")

    def truncate(self, size=None):
        raise io.UnsupportedOperation("truncate")

    def __repr__(self) -> str:
        return f"<ZipResource name={self.info.name!r} size={self.info.size}>"


class ZipFileSystem:
    """Path-addressable view of a fully decompressed zip archive.

    Build it from any iterable of Member objects (see zipfs_source for the
    zip adapters). Paths are '/'-separated; leading and trailing slashes are
    ignored, and "/" itself is always a directory.
    """

    def __init__(self, members: Iterable[Member], options: Options | None = None, **kwargs):
        options = options or Options()
        if kwargs:
            options = replace(options, **kwargs)
        self._files = build_table(members)
        self._options = options
        log.info("Loaded %d entries (index fallback %s)", len(self._files),
                 "on" if options.serve_index_for_missing else "off")

    @property
    def options(self) -> Options:
        return self._options

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, path: str) -> bool:
        return _normalize(path) in self._files

    def names(self) -> list[str]:
        return sorted(self._files)

    def open(self, path: str) -> ZipResource:
        """Open the resource at path. Raises NotFoundError if there is none."""
        if path == "/":
            return ZipResource(b"", ROOT_INFO)

        name = _normalize(path)
        entry = self._files.get(name)
        if entry is not None:
            return ZipResource(entry.content, entry.info)

        # Requests for a missing index.html are not rewritten, otherwise the
        # fallback would loop forever.
        if name != INDEX_NAME and self._options.serve_index_for_missing:
            return self.open(INDEX_NAME)

        raise NotFoundError(f"Not found: {path}")

    def stat(self, path: str) -> FileInfo:
        with self.open(path) as f:
            return f.stat()
