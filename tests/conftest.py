"""Shared fixtures for asyshare tests."""

import asyncio
import os

import h11
import pytest

from asyshare.config import ShareConfig
from asyshare.handler import create_server
from asyshare.http.messages import Request


@pytest.fixture
def share_root(tmp_path):
    """Create a populated share root next to a sibling directory.

    Returns:
        Path of the share root. ``tmp_path / 'outside'`` holds a file that
        must never be reachable.
    """
    root = tmp_path / 'share'
    root.mkdir()
    (root / 'A').mkdir()
    (root / 'a.txt').write_bytes(b'lower a')
    (root / 'b.txt').write_bytes(b'bee')
    (root / 'A' / 'nested.txt').write_bytes(b'nested content')
    (root / 'A' / 'deeper').mkdir()

    outside = tmp_path / 'outside'
    outside.mkdir()
    (outside / 'secret.txt').write_bytes(b'secret')
    return root


@pytest.fixture
def undecodable_name(share_root):
    """Create ``bad\\xffname.txt`` in the share root.

    Returns:
        The name as ``os.scandir`` reports it, with a surrogate escape.
    """
    path = os.path.join(os.fsencode(str(share_root)), b'bad\xffname.txt')
    try:
        with open(path, 'wb') as f:
            f.write(b'odd')
    except OSError:
        pytest.skip('filesystem rejects names that are not UTF-8')
    return os.fsdecode(b'bad\xffname.txt')


@pytest.fixture
def config(share_root):
    """Config bound to an ephemeral localhost port."""
    return ShareConfig.from_directory(str(share_root), host='127.0.0.1', port=0)


def make_request(method='GET', target='/', headers=None):
    """Build a Request the way the HTTP layer does."""
    raw = {}
    for name, value in (headers or {}).items():
        if isinstance(value, str):
            value = value.encode('latin-1')
        raw[name.lower()] = value
    return Request(method, target, raw)


@pytest.fixture
def request_factory():
    return make_request


async def chunk_stream(*chunks, error=None):
    """Async body stream, optionally failing after the given chunks."""
    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error


@pytest.fixture
def body_stream():
    return chunk_stream


async def http_exchange(port, method, target, headers=None, body=None):
    """Perform one HTTP/1.1 request against localhost with an h11 client.

    Returns:
        Tuple of (status code, lower-cased header dict, body bytes).
    """
    reader, writer = await asyncio.open_connection('127.0.0.1', port)
    conn = h11.Connection(h11.CLIENT)
    request_headers = [('Host', 'localhost')]
    for name, value in (headers or {}).items():
        request_headers.append((name, value))
    if body is not None:
        request_headers.append(('Content-Length', str(len(body))))

    writer.write(conn.send(h11.Request(method=method, target=target, headers=request_headers)))
    if body:
        writer.write(conn.send(h11.Data(data=body)))
    writer.write(conn.send(h11.EndOfMessage()))
    await writer.drain()

    response = None
    data = b''
    while True:
        event = conn.next_event()
        if event is h11.NEED_DATA:
            conn.receive_data(await reader.read(65536))
            continue
        if type(event) is h11.Response:
            response = event
        elif type(event) is h11.Data:
            data += event.data
        elif type(event) in (h11.EndOfMessage, h11.ConnectionClosed):
            break

    writer.close()
    try:
        await writer.wait_closed()
    except ConnectionError:
        pass

    headers = {name.decode('ascii'): value.decode('latin-1') for name, value in response.headers}
    return response.status_code, headers, data


@pytest.fixture
def exchange(config):
    """Run a single request against a freshly started server.

    Returns:
        Callable taking (method, target, headers, body) and returning the
        result of :func:`http_exchange`.
    """
    def run(method, target, headers=None, body=None):
        async def scenario():
            async with create_server(config) as server:
                return await http_exchange(server.bound_port(), method, target, headers, body)
        return asyncio.run(scenario())
    return run
