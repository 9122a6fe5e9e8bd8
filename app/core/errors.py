# core/errors.py
"""
Error taxonomy for a build session.

Every failure that ends a session derives from BuildSessionError; its
message is what the client sees in the terminal error frame.
DeserializeError and RelayWriteError never end a session, they are
logged and the session keeps going.
"""


class BuildSessionError(Exception):
    """Base class for failures that terminate a build session."""

    step = "session"


class DecodeError(BuildSessionError):
    """Request content is not valid base64."""

    step = "decode"


class TranscodeError(DecodeError):
    """Archive content is malformed or in an unsupported format."""

    step = "transcode"


class UploadError(BuildSessionError):
    """Storage session or upload to the artifact store failed."""

    step = "upload"


class PublishError(BuildSessionError):
    """Job construction or queue transport failed."""

    step = "publish"


class SubscribeError(BuildSessionError):
    """Log channel subscription could not be established."""

    step = "subscribe"


class LogIdleTimeoutError(BuildSessionError):
    """No message arrived on the log channel within the idle timeout."""

    step = "relay"


class DeserializeError(Exception):
    """A single log channel message could not be decoded."""


class RelayWriteError(Exception):
    """A write to the client stream failed."""
