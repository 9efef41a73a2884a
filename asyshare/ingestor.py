"""
Upload side: streams a request body into a file below the shared root.

The body is written into a uniquely named temporary file next to the final
destination and only renamed onto the requested name once every byte has
been written and synced. Empty uploads and uploads that fail half way are
removed again, so the destination never shows a truncated file.
"""

import os
import enum
import asyncio
import logging

from asyshare.errors import BadRequestError, ServerError, PayloadTooLargeError
from asyshare.resolver import PathResolver

logger = logging.getLogger('asyshare.ingestor')

UPLOAD_TEMP_SUFFIX = '.uploading'


def is_partial_upload(name:str) -> bool:
    return name.startswith('.') and name.endswith(UPLOAD_TEMP_SUFFIX)


class UploadState(enum.Enum):
    CREATED = 1
    WRITING = 2
    FLUSHED = 3
    COMMITTED = 4
    REJECTED_EMPTY = 5
    ABORTED = 6


class UploadIngestor:
    def __init__(self, resolver:PathResolver, flush_threshold:int = 4*1024*1024, max_upload_size:int = 0):
        self.resolver = resolver
        self.flush_threshold = flush_threshold
        self.max_upload_size = max_upload_size

        self.state = UploadState.CREATED
        self.bytes_received = 0
        self.bytes_written = 0
        self.final_path = None
        self.temp_path = None
        self.__fileobj = None
        self.__buffer = bytearray()

    def __write_buffer(self):
        if len(self.__buffer) == 0:
            return
        self.__fileobj.write(self.__buffer)
        self.bytes_written += len(self.__buffer)
        self.__buffer.clear()

    def __cleanup(self):
        if self.__fileobj is not None:
            try:
                self.__fileobj.close()
            except OSError as e:
                logger.error('Failed to close upload file %s: %s' % (self.temp_path, e))
            self.__fileobj = None

        if self.temp_path is not None:
            try:
                os.remove(self.temp_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error('Failed to delete partial upload %s: %s' % (self.temp_path, e))
            self.temp_path = None

    def __abort(self, err):
        self.state = UploadState.ABORTED
        self.__cleanup()
        return None, err

    async def ingest(self, target_dir:str, filename:str, chunks):
        """
        Consumes ``chunks`` (an async iterable of bytes) into
        ``target_dir/filename``.

        ``target_dir`` must already be resolved and ``filename`` sanitized.
        Returns ``(bytes_written, None)`` on commit, otherwise
        ``(None, err)``. The temporary file is always removed on failure.
        Cancellation removes it as well and is then propagated.
        """
        final_path, err = self.resolver.join_child(target_dir, filename)
        if err is not None:
            return None, err
        self.final_path = final_path

        try:
            temp_path = os.path.join(target_dir, '.%s.%s%s' % (filename[:32], os.urandom(8).hex(), UPLOAD_TEMP_SUFFIX))
            fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, 'O_BINARY', 0), 0o666)
            self.temp_path = temp_path
            self.__fileobj = os.fdopen(fd, 'wb')
        except OSError as e:
            logger.error('Failed to create file for upload at %s: %s' % (final_path, e))
            return self.__abort(ServerError("Failed to create file on server", innerexception=e))

        logger.debug('Attempting to upload to: %s' % final_path)
        try:
            self.state = UploadState.WRITING
            async for chunk in chunks:
                if not chunk:
                    continue
                self.bytes_received += len(chunk)
                if self.max_upload_size > 0 and self.bytes_received > self.max_upload_size:
                    logger.debug('Upload to %s exceeds %d bytes' % (final_path, self.max_upload_size))
                    return self.__abort(PayloadTooLargeError())

                self.__buffer.extend(chunk)
                if len(self.__buffer) >= self.flush_threshold:
                    self.__write_buffer()

            self.__write_buffer()
            self.__fileobj.flush()
            os.fsync(self.__fileobj.fileno())
            self.__fileobj.close()
            self.__fileobj = None
            self.state = UploadState.FLUSHED

        except asyncio.CancelledError:
            logger.debug('Upload to %s cancelled' % final_path)
            self.__abort(None)
            raise
        except ConnectionError as e:
            # also covers UploadStreamError raised by the transport
            logger.debug('Upload stream to %s failed after %d bytes: %s' % (final_path, self.bytes_received, e))
            return self.__abort(BadRequestError("Upload stream interrupted", innerexception=e))
        except OSError as e:
            logger.error('Write error while uploading to %s: %s' % (final_path, e))
            return self.__abort(ServerError("Write failure", innerexception=e))

        if self.bytes_written == 0:
            logger.debug('Upload rejected: Received empty file for %s. Deleting.' % final_path)
            self.__cleanup()
            self.state = UploadState.REJECTED_EMPTY
            return None, BadRequestError("Empty file upload rejected")

        try:
            os.replace(self.temp_path, final_path)
        except OSError as e:
            logger.error('Failed to move upload into place at %s: %s' % (final_path, e))
            return self.__abort(ServerError("Failed to store file on server", innerexception=e))

        self.temp_path = None
        self.state = UploadState.COMMITTED
        logger.info('Successfully uploaded %r (%d bytes) to %s' % (filename, self.bytes_written, final_path))
        return self.bytes_written, None
