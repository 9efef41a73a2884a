import os
import stat
import base64
import logging
import binascii

from asyshare.config import ShareConfig
from asyshare.errors import NotFoundError, BadRequestError
from asyshare.resolver import PathResolver
from asyshare.lister import DirectoryLister
from asyshare.responder import ContentResponder
from asyshare.ingestor import UploadIngestor, is_partial_upload
from asyshare.render import render_listing
from asyshare.sanitize import sanitize_filename, default_upload_filename
from asyshare.http.messages import Request, Response

logger = logging.getLogger('asyshare.controllers')


class BrowseController:
    def __init__(self, config:ShareConfig):
        self.config = config
        self.resolver = PathResolver(config.root)
        self.lister = DirectoryLister(config.root)
        self.responder = ContentResponder(config.chunk_size)

    def handle(self, request:Request):
        resolved, err = self.resolver.resolve(request.path)
        if err is not None:
            if isinstance(err, NotFoundError):
                return Response.redirect('/')
            return Response.from_error(err)

        if is_partial_upload(os.path.basename(resolved)):
            logger.debug('Refusing to serve upload in progress: %s' % resolved)
            return Response.redirect('/')

        try:
            st = os.stat(resolved)
        except FileNotFoundError:
            logger.debug('Metadata check failed (Not Found): %s' % resolved)
            return Response.redirect('/')
        except OSError as e:
            logger.error('Failed to get metadata for %s: %s' % (resolved, e))
            return Response.text(500, "Failed to read path metadata")

        if stat.S_ISREG(st.st_mode):
            response, err = self.responder.serve(resolved, request)
            if err is not None:
                return Response.from_error(err)
            return response

        if stat.S_ISDIR(st.st_mode):
            return self.list_directory(resolved, PathResolver.clean_relative(request.path))

        logger.debug('Path is neither file nor directory: %s' % resolved)
        return Response.text(404, "Not found")

    def list_directory(self, resolved:str, cleaned:str):
        listing, err = self.lister.list(resolved, cleaned)
        if err is not None:
            return Response.from_error(err)
        try:
            page = render_listing(listing)
        except Exception:
            logger.exception('Rendering error for %s' % resolved)
            return Response.text(500, "Failed to render directory listing")
        return Response.html(200, page)


class UploadController:
    def __init__(self, config:ShareConfig):
        self.config = config
        self.resolver = PathResolver(config.root)

    @staticmethod
    def requested_filename(request:Request):
        """
        Picks the upload filename: ``X-Target-File-B64`` wins over
        ``X-Target-File``, and without either a timestamped default is used.
        Returns ``(filename, None)`` or ``(None, BadRequestError)``.
        """
        b64_name = request.header('X-Target-File-B64')
        if b64_name is not None:
            try:
                return base64.b64decode(b64_name.strip(), validate=True).decode('utf-8'), None
            except (binascii.Error, ValueError) as e:
                return None, BadRequestError("Invalid base64 filename", innerexception=e)

        plain_name = request.header('X-Target-File')
        if plain_name is not None:
            try:
                name = plain_name.decode('ascii')
            except UnicodeDecodeError as e:
                return None, BadRequestError("Invalid filename header", innerexception=e)
            if name == '':
                return None, BadRequestError("Empty filename header")
            return name, None

        return default_upload_filename(), None

    @staticmethod
    def requested_directory(request:Request):
        """
        Picks the target directory: ``X-Target-Dir-B64`` (base64 of the path
        bytes, sent by the listing page) wins over the plain ASCII
        ``X-Target-Dir``, which is taken as is. Without either the root is used.
        """
        b64_dir = request.header('X-Target-Dir-B64')
        if b64_dir is not None:
            try:
                raw = base64.b64decode(b64_dir.strip(), validate=True)
            except (binascii.Error, ValueError) as e:
                return None, BadRequestError("Invalid base64 target directory", innerexception=e)
            # same surrogate form os.scandir uses for names that are not UTF-8
            return raw.decode('utf-8', errors='surrogateescape'), None

        plain_dir = request.header('X-Target-Dir')
        if plain_dir is None:
            return '', None
        try:
            return plain_dir.decode('ascii'), None
        except UnicodeDecodeError as e:
            return None, BadRequestError("Invalid target directory header", innerexception=e)

    async def handle(self, request:Request, chunks):
        filename, err = UploadController.requested_filename(request)
        if err is not None:
            logger.debug('Upload rejected: %s' % err)
            return Response.from_error(err)

        safe_name = sanitize_filename(filename)
        if safe_name == '' or is_partial_upload(safe_name):
            logger.debug('Upload rejected: filename %r is not usable after sanitizing' % filename)
            return Response.text(400, "Invalid filename")

        target_dir, err = UploadController.requested_directory(request)
        if err is not None:
            return Response.from_error(err)

        final_path, err = self.resolver.resolve_new_file(target_dir, safe_name)
        if err is not None:
            logger.debug('Upload rejected: target %r in %r: %s' % (safe_name, target_dir, err.message))
            if isinstance(err, NotFoundError):
                return Response.text(400, "Target directory does not exist or is inaccessible")
            return Response.from_error(err)

        ingestor = UploadIngestor(self.resolver, self.config.flush_threshold, self.config.max_upload_size)
        directory, filename = os.path.split(final_path)
        _, err = await ingestor.ingest(directory, filename, chunks)
        if err is not None:
            return Response.from_error(err)
        return Response(200)
