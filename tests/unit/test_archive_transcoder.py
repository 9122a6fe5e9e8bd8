"""Unit tests for the build context transcoder."""

import calendar
import gzip
import io
import stat
import tarfile
import zipfile

import pytest

from core.errors import DecodeError, TranscodeError
from services.archive_transcoder import looks_like_gzip_tar, transcode
from tests.mocks.archives import FIXED_ZIP_TIME, make_zip


def _open_tar(data):
    return tarfile.open(fileobj=io.BytesIO(data), mode="r:gz")


def _zip_with_links(entries):
    """Zip from (name, data, link target or None) tuples, in order."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data, target in entries:
            info = zipfile.ZipInfo(name, date_time=FIXED_ZIP_TIME)
            if target is None:
                info.external_attr = 0o644 << 16
                zf.writestr(info, data)
            else:
                info.external_attr = (stat.S_IFLNK | 0o777) << 16
                zf.writestr(info, target)
    return buf.getvalue()


class TestTranscodeZip:
    """Zip build contexts become deterministic tar.gz archives."""

    def test_entries_and_contents_preserved(self, build_context_zip):
        """Every zip entry is present in the tarball with its bytes."""
        out = transcode(build_context_zip)

        with _open_tar(out) as tf:
            assert tf.getnames() == ["Dockerfile", "src", "src/app.py"]
            assert tf.extractfile("Dockerfile").read() == b"FROM ubuntu:22.04\nRUN echo hello\n"
            assert tf.extractfile("src/app.py").read() == b"print('hi')\n"
            assert tf.getmember("src").isdir()

    def test_output_is_gzip(self, build_context_zip):
        out = transcode(build_context_zip)
        assert looks_like_gzip_tar(out)
        # gzip header mtime is zeroed
        assert out[4:8] == b"\x00\x00\x00\x00"

    def test_same_input_same_output(self, build_context_zip):
        """Transcoding is a pure function of the input bytes."""
        assert transcode(build_context_zip) == transcode(build_context_zip)

    def test_ownership_and_times_are_fixed(self, build_context_zip):
        out = transcode(build_context_zip)
        expected_mtime = calendar.timegm(FIXED_ZIP_TIME)

        with _open_tar(out) as tf:
            for member in tf.getmembers():
                assert member.uid == 0
                assert member.gid == 0
                assert member.uname == ""
                assert member.mtime == expected_mtime

    def test_modes_taken_from_zip(self):
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            script = zipfile.ZipInfo("build.sh", date_time=FIXED_ZIP_TIME)
            script.external_attr = 0o755 << 16
            zf.writestr(script, b"#!/bin/sh\n")
            bare = zipfile.ZipInfo("README", date_time=FIXED_ZIP_TIME)
            zf.writestr(bare, b"readme")
            # writestr fills in 0o600 for a zero mode; clear it so no mode is recorded
            bare.external_attr = 0

        with _open_tar(transcode(buf.getvalue())) as tf:
            assert tf.getmember("build.sh").mode == 0o755
            assert tf.getmember("README").mode == 0o644


class TestTranscodeTarGz:
    """Already-compressed tarballs are accepted and normalised."""

    def test_tar_gz_passthrough_normalised(self):
        src = io.BytesIO()
        with tarfile.open(fileobj=src, mode="w:gz") as tf:
            info = tarfile.TarInfo("Dockerfile")
            data = b"FROM alpine\n"
            info.size = len(data)
            info.uid = 1000
            info.uname = "builder"
            info.mtime = 1_600_000_000
            tf.addfile(info, io.BytesIO(data))

        out = transcode(src.getvalue())

        with _open_tar(out) as tf:
            member = tf.getmember("Dockerfile")
            assert member.uid == 0
            assert member.uname == ""
            assert member.mtime == 1_600_000_000
            assert tf.extractfile(member).read() == b"FROM alpine\n"

    def test_gzip_that_is_not_a_tar(self):
        with pytest.raises(TranscodeError):
            transcode(gzip.compress(b"just some text"))


class TestTranscodeRejects:
    """Malformed, unsafe and unsupported archives short-circuit."""

    def test_empty_input(self):
        with pytest.raises(TranscodeError, match="empty"):
            transcode(b"")

    def test_unknown_format(self):
        with pytest.raises(TranscodeError, match="unsupported archive format"):
            transcode(b"this is not an archive at all")

    def test_empty_zip(self):
        with pytest.raises(TranscodeError, match="no files"):
            transcode(make_zip({}))

    def test_parent_traversal(self):
        with pytest.raises(TranscodeError, match="escapes"):
            transcode(make_zip({"../evil.sh": b"rm -rf /"}))

    def test_corrupt_zip(self, build_context_zip):
        # flip bytes inside the compressed data of the first entry
        corrupt = bytearray(build_context_zip)
        for i in range(40, 60):
            corrupt[i] ^= 0xFF
        with pytest.raises(TranscodeError):
            transcode(bytes(corrupt))

    def test_transcode_error_is_a_decode_error(self):
        """Callers treat archive problems as decode failures."""
        with pytest.raises(DecodeError):
            transcode(b"nope")


class TestTranscodeSymlinks:
    """Symlinks may only point inside the build context."""

    def test_link_inside_context_kept(self):
        raw = _zip_with_links([
            ("Dockerfile", b"FROM alpine\n", None),
            ("bin/run", b"#!/bin/sh\n", None),
            ("run", b"", "bin/run"),
        ])

        with _open_tar(transcode(raw)) as tf:
            link = tf.getmember("run")
            assert link.issym()
            assert link.linkname == "bin/run"

    def test_link_escaping_context_rejected(self):
        raw = _zip_with_links([
            ("Dockerfile", b"FROM alpine\n", None),
            ("link", b"", "../../../../etc"),
            ("link/cron.d/x", b"* * * * * root sh\n", None),
        ])
        with pytest.raises(TranscodeError, match="escapes the build context"):
            transcode(raw)

    def test_nested_link_resolved_from_its_directory(self):
        raw = _zip_with_links([
            ("a/b/up", b"", "../../.."),
        ])
        with pytest.raises(TranscodeError, match="escapes the build context"):
            transcode(raw)

    def test_absolute_link_rejected(self):
        raw = _zip_with_links([("etc", b"", "/etc")])
        with pytest.raises(TranscodeError, match="points outside"):
            transcode(raw)

    def test_path_through_link_rejected(self):
        """A harmless-looking link still cannot be used as a directory."""
        raw = _zip_with_links([
            ("src/main.py", b"print()\n", None),
            ("link", b"", "src"),
            ("link/evil.py", b"boom\n", None),
        ])
        with pytest.raises(TranscodeError, match="passes through symlink 'link'"):
            transcode(raw)

    def test_link_target_through_other_link_rejected(self):
        raw = _zip_with_links([
            ("a/b", b"", ".."),
            ("c", b"", "a/b/.."),
        ])
        with pytest.raises(TranscodeError, match="passes through symlink 'a/b'"):
            transcode(raw)

    def test_tar_gz_link_escaping_context_rejected(self):
        src = io.BytesIO()
        with tarfile.open(fileobj=src, mode="w:gz") as tf:
            link = tarfile.TarInfo("link")
            link.type = tarfile.SYMTYPE
            link.linkname = "../outside"
            tf.addfile(link)

        with pytest.raises(TranscodeError, match="escapes the build context"):
            transcode(src.getvalue())
