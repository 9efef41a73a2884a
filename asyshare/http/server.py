import asyncio
import logging
import datetime
import email.utils

import h11

from asyshare._version import __version__
from asyshare.errors import UploadStreamError
from asyshare.http.messages import Request, Response

logger = logging.getLogger('asyshare.http')


class ShareHTTPWrapper:
    def __init__(self, client_id, reader:asyncio.StreamReader, writer:asyncio.StreamWriter):
        self.client_id = client_id
        self.MAX_RECV = 2**16
        self.reader = reader
        self.writer = writer
        self.conn = h11.Connection(h11.SERVER)
        # Our Server: header
        self.ident = " ".join(
            [f"asyshare/{__version__}", h11.PRODUCT_ID]
        ).encode("ascii")

    def peername(self):
        peer = self.writer.get_extra_info('peername')
        if peer is None:
            return '-'
        return '%s:%s' % (peer[0], peer[1])

    async def send(self, event):
        # The code below doesn't send ConnectionClosed, so we don't bother
        # handling it here either -- it would require that we do something
        # appropriate when 'data' is None.
        assert type(event) is not h11.ConnectionClosed
        data = self.conn.send(event)
        try:
            self.writer.write(data)
            await self.writer.drain()
        except BaseException:
            # If the write raises (including cancellation) the connection
            # can not be used for anything else.
            self.conn.send_failed()
            raise

    async def _read_from_peer(self):
        if self.conn.they_are_waiting_for_100_continue:
            logger.debug('[%s] Sending 100 Continue' % self.client_id)
            go_ahead = h11.InformationalResponse(
                status_code=100, headers=self.basic_headers()
            )
            await self.send(go_ahead)
        try:
            data = await self.reader.read(self.MAX_RECV)
        except (ConnectionError, OSError) as exc:
            logger.debug('[%s] Error reading from peer: %s' % (self.client_id, exc))
            # They've stopped listening. Not much we can do about it here.
            data = b""
        self.conn.receive_data(data)

    async def next_event(self):
        while True:
            event = self.conn.next_event()
            if event is h11.NEED_DATA:
                await self._read_from_peer()
                continue
            return event

    async def body_chunks(self):
        """
        Yields the request body as it arrives.

        A peer that disconnects or breaks the framing before the end of the
        message raises UploadStreamError.
        """
        while True:
            try:
                event = await self.next_event()
            except h11.RemoteProtocolError as e:
                raise UploadStreamError(str(e))
            if type(event) is h11.Data:
                yield event.data
            elif type(event) is h11.EndOfMessage:
                return
            elif type(event) is h11.ConnectionClosed:
                raise UploadStreamError('Connection closed by peer')

    async def shutdown_and_clean_up(self):
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as exc:
            logger.debug('[%s] Error closing connection: %s' % (self.client_id, exc))

    def basic_headers(self):
        # HTTP requires these headers in all responses (client would do
        # something different here)
        return [
            ("Date", self.format_date_time().encode("ascii")),
            ("Server", self.ident),
        ]

    def format_date_time(self, dt=None):
        """Generate a RFC 7231 / RFC 9110 IMF-fixdate string"""
        if dt is None:
            dt = datetime.datetime.now(datetime.timezone.utc)
        return email.utils.format_datetime(dt, usegmt=True)


class HTTPServerHandler:
    """
    Per connection request handler. Subclasses implement ``do_<METHOD>``
    coroutines that take a :class:`Request` and return a response object
    (see :mod:`asyshare.http.messages`).
    """
    def __init__(self):
        self._wrapper:ShareHTTPWrapper = None

    def allowed_methods(self):
        return sorted([name[3:] for name in dir(self) if name.startswith('do_')])

    async def _process_request(self, wrapper:ShareHTTPWrapper, event:h11.Request):
        self._wrapper = wrapper
        request = Request.from_h11(event)
        func = getattr(self, f"do_{request.method}", None)
        if func is None:
            response = Response.text(405, "Method Not Allowed")
            response.headers.append(('Allow', ', '.join(self.allowed_methods()).encode('ascii')))
        else:
            try:
                response = await func(request)
            except Exception:
                logger.exception('[%s] Unhandled error processing %s %s' % (wrapper.client_id, request.method, request.target))
                response = Response.text(500, "Internal server error")

        await self.send_response(request, response)
        logger.info('%s "%s %s" %s' % (wrapper.peername(), request.method, request.target, response.status_code))

    async def send_response(self, request:Request, response):
        try:
            headers = self._wrapper.basic_headers()
            headers.extend(response.headers)
            if self._wrapper.conn.their_state is h11.SEND_BODY:
                # the request body was not consumed, do not try to reuse the connection
                headers.append(('Connection', b'close'))

            await self._wrapper.send(h11.Response(status_code=response.status_code, headers=headers))
            if request.method != 'HEAD':
                await response.stream(self.send_data)
            await self._wrapper.send(h11.EndOfMessage())
        finally:
            response.close()

    async def send_data(self, data:bytes):
        await self._wrapper.send(h11.Data(data=data))


class HTTPServer:
    def __init__(self, client_handler, host:str, port:int, ssl_ctx = None):
        self.client_handler = client_handler
        self.host = host
        self.port = port
        self.ssl_ctx = ssl_ctx

        self.server = None
        self.clients = set()
        self.id_counter = 0

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.terminate()

    @property
    def sockets(self):
        if self.server is None:
            return []
        return self.server.sockets

    def bound_port(self):
        return self.sockets[0].getsockname()[1]

    async def terminate(self):
        if self.server is not None:
            self.server.close()
        for task in list(self.clients):
            task.cancel()
        if len(self.clients) > 0:
            await asyncio.gather(*self.clients, return_exceptions=True)
        self.clients = set()
        if self.server is not None:
            await self.server.wait_closed()
            self.server = None

    async def __handle_connection(self, reader, writer):
        task = asyncio.current_task()
        self.clients.add(task)
        client_id = self.id_counter
        self.id_counter += 1
        wrapper = ShareHTTPWrapper(client_id, reader, writer)
        handler = self.client_handler()
        logger.debug('Server: New client connected with id %s' % client_id)
        try:
            while True:
                if wrapper.conn.states == {h11.CLIENT: h11.CLOSED, h11.SERVER: h11.CLOSED}:
                    break

                if wrapper.conn.states[h11.CLIENT] == h11.MUST_CLOSE:
                    break

                if wrapper.conn.states[h11.SERVER] == h11.MUST_CLOSE:
                    break

                if wrapper.conn.states == {h11.CLIENT: h11.DONE, h11.SERVER: h11.DONE}:
                    wrapper.conn.start_next_cycle()
                    continue

                if not (wrapper.conn.states == {h11.CLIENT: h11.IDLE, h11.SERVER: h11.IDLE}):
                    logger.debug('[%s] Server: Connection state not idle: %s' % (client_id, wrapper.conn.states))
                    break

                try:
                    event = await wrapper.next_event()
                except h11.RemoteProtocolError as exc:
                    logger.debug('[%s] Protocol error: %s' % (client_id, exc))
                    await self.send_protocol_error(wrapper, exc)
                    break

                if type(event) is h11.Request:
                    try:
                        await handler._process_request(wrapper, event)
                    except (ConnectionError, OSError, h11.ProtocolError) as exc:
                        # headers may already be out, the only option left is to drop the connection
                        logger.debug('[%s] Error sending response: %r' % (client_id, exc))
                        break
                    continue
                if type(event) is h11.ConnectionClosed:
                    break
                logger.debug('[%s] Server: unknown event type %s' % (client_id, type(event)))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception('[%s] Unexpected error in connection handler' % client_id)
        finally:
            await wrapper.shutdown_and_clean_up()
            self.clients.discard(task)

    async def send_protocol_error(self, wrapper:ShareHTTPWrapper, exc:h11.RemoteProtocolError):
        if wrapper.conn.our_state not in (h11.IDLE, h11.SEND_RESPONSE):
            return
        body = b'Bad request'
        headers = wrapper.basic_headers()
        headers.extend([
            ('Content-Type', b'text/plain; charset=utf-8'),
            ('Content-Length', str(len(body)).encode('ascii')),
            ('Connection', b'close'),
        ])
        try:
            await wrapper.send(h11.Response(status_code=exc.error_status_hint, headers=headers))
            await wrapper.send(h11.Data(data=body))
            await wrapper.send(h11.EndOfMessage())
        except (ConnectionError, OSError, h11.ProtocolError) as e:
            logger.debug('[%s] Could not send error response: %r' % (wrapper.client_id, e))

    async def start(self):
        self.server = await asyncio.start_server(self.__handle_connection, self.host, self.port, ssl=self.ssl_ctx)
        return self.server

    async def serve(self):
        if self.server is None:
            await self.start()
        async with self.server:
            await self.server.serve_forever()
