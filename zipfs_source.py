"""Zip archive sources for ZipFileSystem.

Adapts zipfile.ZipFile members to the loader and provides constructors for
the usual places an archive comes from: an open reader, a path, a byte
buffer, or the running program itself (a zip appended to an executable or
a zipapp).
"""

import io
import logging
import os
import posixpath
import stat
import sys
import zipfile
from datetime import datetime, timezone

from zipfs import BackendError, FileInfo, Member, Options, ZipFileSystem, guess_type

log = logging.getLogger("zipserve.source")

# ZipInfo.create_system values whose external attributes hold a Unix mode.
_UNIX_SYSTEMS = (3, 19)  # Unix, OS X
# ...and those whose low byte holds MS-DOS attributes.
_MSDOS_SYSTEMS = (0, 11, 14)  # FAT, NTFS, VFAT
_MSDOS_READONLY = 0x01
_MSDOS_DIR = 0x10


def _zip_mode(zi: zipfile.ZipInfo) -> int:
    """Derive an st_mode value from a member's external attributes.

    Attributes from any other creator system are not interpreted: such
    members get no permission bits, only the file type.
    """
    is_dir = zi.is_dir()
    kind = stat.S_IFREG
    perm = 0
    if zi.create_system in _UNIX_SYSTEMS:
        raw = zi.external_attr >> 16
        perm = stat.S_IMODE(raw)
        kind = stat.S_IFMT(raw) or stat.S_IFREG
    elif zi.create_system in _MSDOS_SYSTEMS:
        is_dir = is_dir or bool(zi.external_attr & _MSDOS_DIR)
        perm = 0o777 if is_dir else 0o666
        if zi.external_attr & _MSDOS_READONLY:
            perm &= ~0o222
    if is_dir:
        kind = stat.S_IFDIR
    return kind | perm


def _zip_mtime(zi: zipfile.ZipInfo) -> datetime:
    try:
        return datetime(*zi.date_time, tzinfo=timezone.utc)
    except ValueError:
        # Some writers leave month/day at zero.
        return datetime(1980, 1, 1, tzinfo=timezone.utc)


def zip_info(zi: zipfile.ZipInfo) -> FileInfo:
    """Build FileInfo from a zip member's header."""
    mode = _zip_mode(zi)
    is_dir = stat.S_ISDIR(mode)
    name = posixpath.basename(zi.filename.rstrip("/"))
    return FileInfo(
        name=name,
        is_dir=is_dir,
        size=0 if is_dir else zi.file_size,
        mtime=_zip_mtime(zi),
        mode=mode,
        content_type=guess_type(name),
    )


def zip_members(zf: zipfile.ZipFile) -> list[Member]:
    """List the members of an open archive in central directory order."""
    return [
        Member(name=zi.filename, info=zip_info(zi), open=lambda zi=zi: zf.open(zi))
        for zi in zf.infolist()
    ]


def from_zipfile(zf: zipfile.ZipFile, options: Options | None = None, **kwargs) -> ZipFileSystem:
    """Create a filesystem from an already open ZipFile. The caller keeps ownership of zf."""
    return ZipFileSystem(zip_members(zf), options, **kwargs)


def _open_zip(source) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(source, "r")
    except (zipfile.BadZipFile, FileNotFoundError, OSError) as e:
        raise BackendError(f"Cannot open ZIP file: {e}") from e


def from_path(path: str | os.PathLike, options: Options | None = None, **kwargs) -> ZipFileSystem:
    """Create a filesystem from a zip file on disk.

    The file is closed again once everything has been read into memory.
    """
    log.debug("Reading archive %s", path)
    with _open_zip(path) as zf:
        return from_zipfile(zf, options, **kwargs)


def from_bytes(data: bytes, options: Options | None = None, **kwargs) -> ZipFileSystem:
    """Create a filesystem from an in-memory zip archive."""
    with _open_zip(io.BytesIO(data)) as zf:
        return from_zipfile(zf, options, **kwargs)


def executable_path() -> str:
    """Path of the file the current program was started from.

    Frozen applications (PyInstaller and friends) are their own
    sys.executable; otherwise the program is the script or zipapp named by
    sys.argv[0].
    """
    if getattr(sys, "frozen", False):
        return os.path.realpath(sys.executable)
    return os.path.realpath(sys.argv[0])


def from_executable(options: Options | None = None, **kwargs) -> ZipFileSystem:
    """Create a filesystem from the zip archive appended to the running program.

    zipfile locates the central directory from the end of the file, so any
    executable with a zip appended to it (or a zipapp) works as a source.
    """
    path = executable_path()
    log.info("Serving archive embedded in %s", path)
    return from_path(path, options, **kwargs)
