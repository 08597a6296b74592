class TarballError(Exception):
    """Base class for tarstream errors."""


# Stream content
class DecodeError(TarballError):
    """The gzip envelope or the tar framing is corrupt or truncated."""


class SizeMismatchError(TarballError):
    """An entry's payload length differs from the size declared in its header."""


# Caller input
class PatternError(TarballError, ValueError):
    pass


class EntryNotFoundError(TarballError, LookupError):
    def __init__(self, path: str):
        super().__init__(f"no file named {path} in tarball")
        self.path = path


# Cursor misuse
class StreamStateError(TarballError):
    pass
