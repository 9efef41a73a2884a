import re
import time

_ILLEGAL_RE = re.compile(r'[/\\?<>:*|"]')
_CONTROL_RE = re.compile(r'[\x00-\x1f\x80-\x9f]')
_RESERVED_RE = re.compile(r'^\.+$')
_WINDOWS_RESERVED_RE = re.compile(r'^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$', re.IGNORECASE)
_WINDOWS_TRAILING_RE = re.compile(r'[. ]+$')

MAX_FILENAME_BYTES = 255


def default_upload_filename(now=None):
    if now is None:
        now = time.time()
    return 'upload_%d.bin' % int(now * 1000)


def _truncate_utf8(name, limit):
    encoded = name.encode('utf-8')
    if len(encoded) <= limit:
        return name
    return encoded[:limit].decode('utf-8', errors='ignore')


def sanitize_filename(filename:str) -> str:
    """
    Makes a client supplied filename safe to join onto a directory.

    Anything up to the last ``/`` or ``\\`` is dropped and characters
    that are unsafe on common filesystems are removed. Names made only of
    dots and Windows device names become empty, trailing dots and spaces
    are trimmed, and the result is capped at 255 UTF-8 bytes. An empty return value means there was nothing usable left.
    """
    if not filename:
        return ''
    # only the last path component is kept
    name = filename.replace('\\', '/').rsplit('/', 1)[-1]
    name = _ILLEGAL_RE.sub('', name)
    name = _CONTROL_RE.sub('', name)
    name = _RESERVED_RE.sub('', name)
    name = _WINDOWS_RESERVED_RE.sub('', name)
    name = _WINDOWS_TRAILING_RE.sub('', name)
    name = _truncate_utf8(name, MAX_FILENAME_BYTES)
    # truncation can expose a new trailing dot or space
    name = _WINDOWS_TRAILING_RE.sub('', name)
    if _RESERVED_RE.match(name):
        return ''
    return name
