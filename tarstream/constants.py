import tarfile


# Tar framing (POSIX: 512-byte blocks grouped into 20-block records)
BLOCKSIZE = tarfile.BLOCKSIZE      # 512
RECORDSIZE = tarfile.RECORDSIZE    # 10240
NUL = b"\x00"

TAR_FORMAT = tarfile.PAX_FORMAT
TAR_ENCODING = "utf-8"
TAR_ERRORS = "surrogateescape"

# gzip envelope
DEFAULT_COMPRESS_LEVEL = 6

# Payload copy granularity
COPY_BUFSIZE = 64 * 1024

# Per-entry cursor states shared by reader and writer
HEADER_PENDING = "header-pending"
PAYLOAD_IN_PROGRESS = "payload-in-progress"
CLOSED = "closed"

# Mode bits recorded for files added from disk
MODE_MASK = 0o7777
# Parent directories created for a new archive
ARCHIVE_DIR_MODE = 0o700
