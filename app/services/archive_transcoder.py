# services/archive_transcoder.py
"""
Build context transcoding.

Clients upload their build context as a zip archive; workers expect a
gzip-compressed tar. The output is deterministic: identical input bytes
always produce identical output bytes (fixed ownership, entry order from
the source archive, timestamps from the source entries, zero gzip mtime).
An already gzip-compressed tar is accepted and normalised the same way.
"""

import calendar
import gzip
import io
import posixpath
import stat
import tarfile
import zipfile
import zlib
from dataclasses import dataclass
from typing import List, Set

from core.errors import TranscodeError

GZIP_MAGIC = b"\x1f\x8b"

DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755


@dataclass(frozen=True)
class _Entry:
    name: str
    type: bytes
    mode: int
    mtime: int
    data: bytes = b""
    linkname: str = ""


def _safe_name(name: str) -> str:
    if not name or name.startswith("/") or posixpath.isabs(name):
        raise TranscodeError(f"archive entry has an absolute path: {name!r}")
    normalized = posixpath.normpath(name)
    if normalized == ".." or normalized.startswith("../"):
        raise TranscodeError(f"archive entry escapes the build context: {name!r}")
    return normalized


def _walk(path: str, links: Set[str], entry_name: str) -> None:
    """
    Resolve `path` one component at a time. Fails if it climbs above the
    build context root or passes through a symlink entry of the archive.
    """
    parts: List[str] = []
    for part in path.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise TranscodeError(f"archive entry escapes the build context: {entry_name!r}")
            parts.pop()
            continue
        parts.append(part)
        current = "/".join(parts)
        if current in links:
            raise TranscodeError(
                f"archive entry {entry_name!r} passes through symlink {current!r}"
            )


def _check_links(entries: List[_Entry]) -> None:
    """Symlinks must stay inside the build context and no path may traverse one."""
    links = {e.name for e in entries if e.type == tarfile.SYMTYPE}
    for entry in entries:
        parent = posixpath.dirname(entry.name)
        if parent:
            _walk(parent, links, entry.name)
        if entry.type != tarfile.SYMTYPE:
            continue
        if not entry.linkname or posixpath.isabs(entry.linkname):
            raise TranscodeError(
                f"symlink {entry.name!r} points outside the build context: {entry.linkname!r}"
            )
        _walk(posixpath.join(parent, entry.linkname), links - {entry.name}, entry.name)


def _read_zip(raw: bytes) -> List[_Entry]:
    entries: List[_Entry] = []
    try:
        with zipfile.ZipFile(io.BytesIO(raw), "r") as zf:
            for info in zf.infolist():
                name = _safe_name(info.filename)
                if name == ".":
                    continue
                mtime = calendar.timegm(info.date_time)
                unix_mode = info.external_attr >> 16
                if info.is_dir():
                    entries.append(_Entry(
                        name=name,
                        type=tarfile.DIRTYPE,
                        mode=stat.S_IMODE(unix_mode) or DEFAULT_DIR_MODE,
                        mtime=mtime,
                    ))
                elif stat.S_ISLNK(unix_mode):
                    entries.append(_Entry(
                        name=name,
                        type=tarfile.SYMTYPE,
                        mode=0o777,
                        mtime=mtime,
                        linkname=zf.read(info).decode("utf-8"),
                    ))
                else:
                    entries.append(_Entry(
                        name=name,
                        type=tarfile.REGTYPE,
                        mode=stat.S_IMODE(unix_mode) or DEFAULT_FILE_MODE,
                        mtime=mtime,
                        data=zf.read(info),
                    ))
    except TranscodeError:
        raise
    except (zipfile.BadZipFile, zipfile.LargeZipFile, NotImplementedError,
            RuntimeError, EOFError, OSError, UnicodeDecodeError, zlib.error) as e:
        raise TranscodeError(f"unable to read zip archive: {e}") from e
    return entries


def _read_tar_gz(raw: bytes) -> List[_Entry]:
    entries: List[_Entry] = []
    try:
        with tarfile.open(fileobj=io.BytesIO(raw), mode="r:gz") as tf:
            for member in tf.getmembers():
                name = _safe_name(member.name)
                if name == ".":
                    continue
                if member.isdir():
                    entries.append(_Entry(name, tarfile.DIRTYPE, member.mode, int(member.mtime)))
                elif member.issym():
                    entries.append(_Entry(name, tarfile.SYMTYPE, member.mode, int(member.mtime),
                                          linkname=member.linkname))
                elif member.isfile():
                    f = tf.extractfile(member)
                    entries.append(_Entry(name, tarfile.REGTYPE, member.mode, int(member.mtime),
                                          data=f.read() if f is not None else b""))
                # devices, fifos and hard links have no place in a build context
    except TranscodeError:
        raise
    except (tarfile.TarError, EOFError, OSError, zlib.error) as e:
        raise TranscodeError(f"unable to read tar.gz archive: {e}") from e
    return entries


def _write_tar_gz(entries: List[_Entry]) -> bytes:
    buf = io.BytesIO()
    with gzip.GzipFile(filename="", mode="wb", fileobj=buf, mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.GNU_FORMAT) as tf:
            for entry in entries:
                info = tarfile.TarInfo(entry.name)
                info.type = entry.type
                info.mode = entry.mode
                info.mtime = entry.mtime
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                if entry.type == tarfile.SYMTYPE:
                    info.linkname = entry.linkname
                    tf.addfile(info)
                elif entry.type == tarfile.DIRTYPE:
                    tf.addfile(info)
                else:
                    info.size = len(entry.data)
                    tf.addfile(info, io.BytesIO(entry.data))
    return buf.getvalue()


def looks_like_gzip_tar(raw: bytes) -> bool:
    return raw[:2] == GZIP_MAGIC


def transcode(raw: bytes) -> bytes:
    """
    Convert an uploaded build context into the tar.gz a worker expects.

    Args:
        raw: Archive bytes, already base64-decoded

    Returns:
        bytes: gzip-compressed tar archive

    Raises:
        TranscodeError: Malformed, empty, unsafe or unsupported archive
    """
    if not raw:
        raise TranscodeError("build context archive is empty")

    if looks_like_gzip_tar(raw):
        entries = _read_tar_gz(raw)
    elif zipfile.is_zipfile(io.BytesIO(raw)):
        entries = _read_zip(raw)
    else:
        raise TranscodeError("unsupported archive format, expected a zip or tar.gz file")

    if not entries:
        raise TranscodeError("build context archive contains no files")

    _check_links(entries)
    return _write_tar_gz(entries)
