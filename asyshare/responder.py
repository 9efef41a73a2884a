"""
Download side: streams a resolved regular file back to the client.

Besides the plain body this provides the static file semantics clients
expect from a file server: validators (ETag, Last-Modified), conditional
requests (If-None-Match, If-Modified-Since, If-Range) and single byte
ranges.
"""

import os
import logging
import mimetypes
import email.utils
import datetime
from urllib.parse import quote

from asyshare.errors import ServerError
from asyshare.http.messages import FileResponse

logger = logging.getLogger('asyshare.responder')

INLINE_TYPES = ('text/', 'image/', 'audio/', 'video/')

RANGE_FULL = 'full'
RANGE_PARTIAL = 'partial'
RANGE_UNSATISFIABLE = 'unsatisfiable'


def get_mime_type(filepath):
    mime_type, _ = mimetypes.guess_type(filepath)
    return mime_type or 'application/octet-stream'


def make_etag(st):
    return '"%x-%x"' % (st.st_mtime_ns, st.st_size)


def format_http_date(timestamp):
    dt = datetime.datetime.fromtimestamp(int(timestamp), datetime.timezone.utc)
    return email.utils.format_datetime(dt, usegmt=True)


def parse_http_date(value):
    try:
        dt = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.timestamp()


def content_disposition(mime_type, filename):
    disposition = 'inline' if mime_type.startswith(INLINE_TYPES) else 'attachment'
    fallback = filename.encode('ascii', errors='replace').decode('ascii').replace('?', '_')
    fallback = fallback.replace('"', '_').replace('\\', '_')
    if fallback == filename:
        return '%s; filename="%s"' % (disposition, filename)
    return "%s; filename=\"%s\"; filename*=UTF-8''%s" % (disposition, fallback, quote(filename, safe='', errors='surrogateescape'))


def etag_matches(header_value, etag):
    for candidate in header_value.split(','):
        candidate = candidate.strip()
        if candidate == '*':
            return True
        if candidate.startswith('W/'):
            candidate = candidate[2:]
        if candidate == etag:
            return True
    return False


def parse_range(header_value, size):
    """
    Parses a ``Range`` header against a file of ``size`` bytes.

    Returns ``(kind, start, end)`` with an inclusive end. Only a single
    ``bytes`` range is honoured; anything malformed or multi-range falls back
    to the full body.
    """
    if header_value is None:
        return RANGE_FULL, 0, size - 1
    header_value = header_value.strip()
    if not header_value.startswith('bytes='):
        return RANGE_FULL, 0, size - 1
    byte_range = header_value[6:].strip()
    if ',' in byte_range or '-' not in byte_range:
        return RANGE_FULL, 0, size - 1

    start, end = byte_range.split('-', 1)
    start = start.strip()
    end = end.strip()
    try:
        if start == '':
            # suffix range: last N bytes
            if end == '':
                return RANGE_FULL, 0, size - 1
            suffix = int(end)
            if suffix < 0:
                return RANGE_FULL, 0, size - 1
            if suffix == 0 or size == 0:
                return RANGE_UNSATISFIABLE, 0, 0
            return RANGE_PARTIAL, max(0, size - suffix), size - 1

        first = int(start)
        last = int(end) if end != '' else size - 1
    except ValueError:
        return RANGE_FULL, 0, size - 1

    if first < 0 or last < first:
        return RANGE_FULL, 0, size - 1
    if first >= size:
        return RANGE_UNSATISFIABLE, 0, 0
    return RANGE_PARTIAL, first, min(last, size - 1)


class ContentResponder:
    def __init__(self, chunk_size:int = 512*1024):
        self.chunk_size = chunk_size

    def not_modified(self, request, etag, mtime):
        if_none_match = request.header_str('If-None-Match')
        if if_none_match is not None:
            return etag_matches(if_none_match, etag)

        if_modified_since = request.header_str('If-Modified-Since')
        if if_modified_since is not None:
            since = parse_http_date(if_modified_since)
            if since is not None and int(mtime) <= since:
                return True
        return False

    def range_applies(self, request, etag, last_modified):
        if_range = request.header_str('If-Range')
        if if_range is None:
            return True
        if_range = if_range.strip()
        return if_range == etag or if_range == last_modified

    def serve(self, resolved_path:str, request):
        """
        Prepares a streamed response for an already resolved regular file.

        Returns ``(FileResponse, None)`` or ``(None, ServerError)``. The file
        is opened here so that open failures can still be reported as a
        proper 500; the body is only read once the response is streamed.
        """
        try:
            fileobj = open(resolved_path, 'rb')
        except OSError as e:
            logger.error('Failed to open %s for download: %s' % (resolved_path, e))
            return None, ServerError("Error serving file", innerexception=e)

        try:
            st = os.fstat(fileobj.fileno())
        except OSError as e:
            fileobj.close()
            logger.error('Failed to stat %s: %s' % (resolved_path, e))
            return None, ServerError("Error serving file", innerexception=e)

        size = st.st_size
        etag = make_etag(st)
        last_modified = format_http_date(st.st_mtime)
        mime_type = get_mime_type(resolved_path)

        headers = [
            ('ETag', etag.encode('ascii')),
            ('Last-Modified', last_modified.encode('ascii')),
            ('Accept-Ranges', b'bytes'),
        ]

        if self.not_modified(request, etag, st.st_mtime) is True:
            fileobj.close()
            return FileResponse(304, headers), None

        kind, start, end = RANGE_FULL, 0, size - 1
        if self.range_applies(request, etag, last_modified) is True:
            kind, start, end = parse_range(request.header_str('Range'), size)

        if kind == RANGE_UNSATISFIABLE:
            fileobj.close()
            headers.append(('Content-Range', ('bytes */%d' % size).encode('ascii')))
            headers.append(('Content-Length', b'0'))
            return FileResponse(416, headers), None

        length = size
        status_code = 200
        if kind == RANGE_PARTIAL:
            length = end - start + 1
            status_code = 206
            headers.append(('Content-Range', ('bytes %d-%d/%d' % (start, end, size)).encode('ascii')))
        else:
            start = 0

        headers.extend([
            ('Content-Type', mime_type.encode('ascii')),
            ('Content-Length', str(length).encode('ascii')),
            ('Content-Disposition', content_disposition(mime_type, os.path.basename(resolved_path)).encode('ascii')),
        ])

        if request.method == 'HEAD':
            fileobj.close()
            return FileResponse(status_code, headers), None

        logger.debug('Serving file: %s' % resolved_path)
        return FileResponse(status_code, headers, fileobj, start, length, self.chunk_size), None
