from asyshare.config import ShareConfig
from asyshare.controllers import BrowseController, UploadController
from asyshare.http.messages import Request, Response
from asyshare.http.server import HTTPServerHandler, HTTPServer

UPLOAD_PATH = '/upload'


class FileShareHandler(HTTPServerHandler):
    """
    Routes requests of one client connection:

    - ``GET``/``HEAD /<path>`` browse directories and download files
    - ``POST /upload`` stores the raw request body as a file
    """
    def __init__(self, config:ShareConfig):
        super().__init__()
        self.config = config
        self.browse = BrowseController(config)
        self.upload = UploadController(config)

    async def do_GET(self, request:Request):
        return self.browse.handle(request)

    async def do_HEAD(self, request:Request):
        return self.browse.handle(request)

    async def do_POST(self, request:Request):
        if request.path != UPLOAD_PATH:
            response = Response.text(405, "Method Not Allowed")
            response.headers.append(('Allow', b'GET, HEAD'))
            return response
        return await self.upload.handle(request, self._wrapper.body_chunks())


def create_server(config:ShareConfig, ssl_ctx = None) -> HTTPServer:
    return HTTPServer(lambda: FileShareHandler(config), config.host, config.port, ssl_ctx = ssl_ctx)
