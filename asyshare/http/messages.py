from typing import Dict, List, Tuple, Optional
from urllib.parse import urlsplit, unquote


class Request:
    """The parts of an h11 request the controllers look at."""
    def __init__(self, method:str, target:str, headers:Dict[str, bytes]):
        self.method = method
        self.target = target
        self.headers = headers
        self.path = unquote(urlsplit(target).path, errors='surrogateescape')

    @staticmethod
    def from_h11(event) -> 'Request':
        headers = {}
        for name, value in event.headers:
            name = name.decode('ascii').lower()
            if name in headers:
                headers[name] = headers[name] + b', ' + value
            else:
                headers[name] = value
        return Request(event.method.decode('ascii'), event.target.decode('ascii', errors='replace'), headers)

    def header(self, name:str, default=None) -> Optional[bytes]:
        return self.headers.get(name.lower(), default)

    def header_str(self, name:str, default=None) -> Optional[str]:
        value = self.headers.get(name.lower())
        if value is None:
            return default
        return value.decode('latin-1')


class Response:
    def __init__(self, status_code:int, body:bytes = b'', headers:List[Tuple[str, bytes]] = None, content_type:str = 'text/plain; charset=utf-8'):
        self.status_code = status_code
        self.body = body
        self.headers = headers if headers is not None else []
        if content_type is not None and len(body) > 0:
            self.headers.append(('Content-Type', content_type.encode('ascii')))
        self.headers.append(('Content-Length', str(len(body)).encode('ascii')))

    @staticmethod
    def text(status_code:int, message:str) -> 'Response':
        return Response(status_code, message.encode('utf-8'))

    @staticmethod
    def html(status_code:int, page:str) -> 'Response':
        return Response(status_code, page.encode('utf-8'), content_type='text/html; charset=utf-8')

    @staticmethod
    def redirect(location:str, status_code:int = 303) -> 'Response':
        return Response(status_code, headers=[('Location', location.encode('ascii'))])

    @staticmethod
    def from_error(err) -> 'Response':
        return Response.text(err.status_code, err.message)

    async def stream(self, send):
        if len(self.body) > 0:
            await send(self.body)

    def close(self):
        return


class FileResponse:
    """Response whose body is read from an open file in fixed size chunks."""
    def __init__(self, status_code:int, headers:List[Tuple[str, bytes]], fileobj = None, offset:int = 0, length:int = 0, chunk_size:int = 512*1024):
        self.status_code = status_code
        self.headers = headers
        self.fileobj = fileobj
        self.offset = offset
        self.length = length
        self.chunk_size = chunk_size
        self.bytes_sent = 0

    async def stream(self, send):
        if self.fileobj is None:
            return
        try:
            if self.offset > 0:
                self.fileobj.seek(self.offset)
            remaining = self.length
            while remaining > 0:
                chunk = self.fileobj.read(min(self.chunk_size, remaining))
                if not chunk:
                    raise OSError('File shrank while it was being sent')
                await send(chunk)
                self.bytes_sent += len(chunk)
                remaining -= len(chunk)
        finally:
            self.close()

    def close(self):
        if self.fileobj is not None:
            self.fileobj.close()
            self.fileobj = None
