"""Tests for the browse and upload controllers."""

import asyncio
import base64
import os
import re

import pytest

from asyshare.controllers import BrowseController, UploadController
from asyshare.errors import BadRequestError
from asyshare.resolver import PathResolver


@pytest.fixture
def browse(config):
    return BrowseController(config)


@pytest.fixture
def upload(config):
    return UploadController(config)


def run_upload(controller, request, chunks):
    return asyncio.run(controller.handle(request, chunks))


def b64(name):
    return base64.b64encode(name.encode('utf-8')).decode('ascii')


class TestBrowseController:
    """Tests for GET handling."""

    def test_root_listing(self, browse, request_factory):
        """Test that the root renders as an HTML listing."""
        response = browse.handle(request_factory('GET', '/'))

        assert response.status_code == 200
        assert dict(response.headers)['Content-Type'] == b'text/html; charset=utf-8'
        page = response.body.decode('utf-8')
        assert page.index('A/') < page.index('a.txt') < page.index('b.txt')

    def test_subdirectory_listing(self, browse, request_factory):
        """Test listing a nested directory."""
        response = browse.handle(request_factory('GET', '/A'))

        assert response.status_code == 200
        assert b'nested.txt' in response.body
        assert b'Parent directory' in response.body

    def test_percent_encoded_path(self, browse, share_root, request_factory):
        """Test that the request path is percent-decoded."""
        (share_root / 'my file.txt').write_bytes(b'spaced')

        response = browse.handle(request_factory('GET', '/my%20file.txt'))

        assert response.status_code == 200
        assert dict(response.headers)['Content-Length'] == b'6'
        response.close()

    def test_file_download(self, browse, request_factory):
        """Test that a regular file is streamed."""
        response = browse.handle(request_factory('GET', '/A/nested.txt'))

        assert response.status_code == 200
        assert response.length == 14
        response.close()

    def test_missing_redirects_to_root(self, browse, request_factory):
        """Test the See Other redirect for unknown paths."""
        response = browse.handle(request_factory('GET', '/nope.txt'))

        assert response.status_code == 303
        assert dict(response.headers)['Location'] == b'/'

    def test_traversal_forbidden(self, browse, request_factory):
        """Test that escaping the root is refused."""
        response = browse.handle(request_factory('GET', '/../outside/secret.txt'))

        assert response.status_code == 403
        assert response.body == b'Forbidden access'

    def test_encoded_traversal_forbidden(self, browse, request_factory):
        """Test that percent-encoded dot segments are refused as well."""
        response = browse.handle(request_factory('GET', '/%2e%2e/%2e%2e/etc/passwd'))

        assert response.status_code == 403

    def test_listing_with_undecodable_name(self, browse, request_factory, undecodable_name):
        """Test that one odd name does not break the whole listing."""
        response = browse.handle(request_factory('GET', '/'))

        assert response.status_code == 200
        assert b'href="/bad%FFname.txt"' in response.body
        assert 'bad�name.txt'.encode('utf-8') in response.body

    def test_download_undecodable_name(self, browse, request_factory, undecodable_name):
        """Test that the listing link for such a name downloads the file."""
        response = browse.handle(request_factory('GET', '/bad%FFname.txt'))

        assert response.status_code == 200
        assert response.length == 3
        response.close()

    def test_upload_in_progress_not_served(self, browse, share_root, request_factory):
        """Test that a temporary upload file can not be downloaded."""
        (share_root / '.x.bin.0011223344556677.uploading').write_bytes(b'half')

        response = browse.handle(request_factory('GET', '/.x.bin.0011223344556677.uploading'))

        assert response.status_code == 303
        assert dict(response.headers)['Location'] == b'/'

    @pytest.mark.skipif(not hasattr(os, 'mkfifo'), reason='named pipes not available')
    def test_special_file_not_found(self, browse, share_root, request_factory):
        """Test that non-regular files are not served."""
        os.mkfifo(str(share_root / 'pipe'))

        response = browse.handle(request_factory('GET', '/pipe'))

        assert response.status_code == 404


class TestRequestedFilename:
    """Tests for filename header selection."""

    def test_b64_wins(self, request_factory):
        """Test that the base64 header takes precedence."""
        request = request_factory('POST', '/upload', {
            'X-Target-File-B64': b64('jelentés.pdf'),
            'X-Target-File': 'plain.pdf',
        })

        assert UploadController.requested_filename(request) == ('jelentés.pdf', None)

    def test_plain_header(self, request_factory):
        """Test the ASCII header on its own."""
        request = request_factory('POST', '/upload', {'X-Target-File': 'report.csv'})

        assert UploadController.requested_filename(request) == ('report.csv', None)

    def test_default_name(self, request_factory):
        """Test the generated name without any header."""
        name, err = UploadController.requested_filename(request_factory('POST', '/upload'))

        assert err is None
        assert re.fullmatch(r'upload_\d+\.bin', name)

    @pytest.mark.parametrize('value', ['not base64!', 'YWJj=', b64('x')[:-1]])
    def test_invalid_b64(self, request_factory, value):
        """Test that undecodable base64 is a bad request."""
        name, err = UploadController.requested_filename(request_factory('POST', '/upload', {'X-Target-File-B64': value}))

        assert name is None
        assert isinstance(err, BadRequestError)

    def test_b64_not_utf8(self, request_factory):
        """Test that base64 of invalid UTF-8 is a bad request."""
        value = base64.b64encode(b'\xff\xfe').decode('ascii')

        name, err = UploadController.requested_filename(request_factory('POST', '/upload', {'X-Target-File-B64': value}))

        assert isinstance(err, BadRequestError)

    def test_empty_plain_header(self, request_factory):
        """Test that an empty filename header is rejected."""
        name, err = UploadController.requested_filename(request_factory('POST', '/upload', {'X-Target-File': ''}))

        assert isinstance(err, BadRequestError)

    def test_non_ascii_plain_header(self, request_factory):
        """Test that raw non-ASCII header bytes are rejected."""
        request = request_factory('POST', '/upload', {'X-Target-File': b'caf\xe9.txt'})

        name, err = UploadController.requested_filename(request)

        assert isinstance(err, BadRequestError)

    def test_plain_target_directory_is_taken_as_is(self, request_factory):
        """Test that X-Target-Dir is not percent-decoded."""
        request = request_factory('POST', '/upload', {'X-Target-Dir': 'a%41'})

        assert UploadController.requested_directory(request) == ('a%41', None)

    def test_b64_target_directory_wins(self, request_factory):
        """Test that the base64 directory header takes precedence."""
        request = request_factory('POST', '/upload', {
            'X-Target-Dir-B64': b64('my docs/kép'),
            'X-Target-Dir': 'A',
        })

        assert UploadController.requested_directory(request) == ('my docs/kép', None)

    def test_b64_target_directory_raw_bytes(self, request_factory):
        """Test that directory bytes which are not UTF-8 map to the scandir form."""
        request = request_factory('POST', '/upload', {'X-Target-Dir-B64': 'ZP8='})

        assert UploadController.requested_directory(request) == ('d\udcff', None)

    def test_invalid_b64_target_directory(self, request_factory):
        """Test that a broken base64 directory header is a bad request."""
        request = request_factory('POST', '/upload', {'X-Target-Dir-B64': '!!'})

        directory, err = UploadController.requested_directory(request)

        assert directory is None
        assert isinstance(err, BadRequestError)


class TestUploadController:
    """Tests for POST /upload handling."""

    def test_upload_to_root(self, upload, share_root, request_factory, body_stream):
        """Test a plain upload into the root."""
        request = request_factory('POST', '/upload', {'X-Target-File': 'report.csv'})

        response = run_upload(upload, request, body_stream(b'col\n', b'1\n'))

        assert response.status_code == 200
        assert response.body == b''
        assert (share_root / 'report.csv').read_bytes() == b'col\n1\n'

    def test_upload_to_subdirectory(self, upload, share_root, request_factory, body_stream):
        """Test that X-Target-Dir selects the directory."""
        request = request_factory('POST', '/upload', {
            'X-Target-Dir': 'A/deeper',
            'X-Target-File-B64': b64('kép.png'),
        })

        response = run_upload(upload, request, body_stream(b'\x89PNG'))

        assert response.status_code == 200
        assert (share_root / 'A' / 'deeper' / 'kép.png').read_bytes() == b'\x89PNG'

    def test_target_resolved_once(self, upload, share_root, request_factory, body_stream, monkeypatch):
        """Test that the final path comes from resolve_new_file."""
        calls = []
        original = PathResolver.resolve_new_file

        def spy(resolver, requested_dir, filename):
            calls.append((requested_dir, filename))
            return original(resolver, requested_dir, filename)

        monkeypatch.setattr(PathResolver, 'resolve_new_file', spy)
        request = request_factory('POST', '/upload', {'X-Target-Dir': 'A', 'X-Target-File': 'x.bin'})

        response = run_upload(upload, request, body_stream(b'x'))

        assert response.status_code == 200
        assert calls == [('A', 'x.bin')]
        assert (share_root / 'A' / 'x.bin').read_bytes() == b'x'

    def test_upload_into_b64_directory(self, upload, share_root, request_factory, body_stream):
        """Test the header pair the listing page sends."""
        (share_root / 'kép tár').mkdir()
        request = request_factory('POST', '/upload', {
            'X-Target-Dir-B64': b64('kép tár'),
            'X-Target-File-B64': b64('fénykép.jpg'),
        })

        response = run_upload(upload, request, body_stream(b'jpeg'))

        assert response.status_code == 200
        assert (share_root / 'kép tár' / 'fénykép.jpg').read_bytes() == b'jpeg'

    def test_temporary_upload_name_rejected(self, upload, share_root, request_factory, body_stream):
        """Test that a name which would be hidden as an upload in progress is refused."""
        request = request_factory('POST', '/upload', {'X-Target-File': '.a.uploading'})

        response = run_upload(upload, request, body_stream(b'x'))

        assert response.status_code == 400
        assert not (share_root / '.a.uploading').exists()

    def test_filename_is_sanitized(self, upload, share_root, tmp_path, request_factory, body_stream):
        """Test that path components in the filename are dropped."""
        request = request_factory('POST', '/upload', {'X-Target-File': '../../outside/evil.sh'})

        response = run_upload(upload, request, body_stream(b'#!'))

        assert response.status_code == 200
        assert (share_root / 'evil.sh').read_bytes() == b'#!'
        assert not (tmp_path / 'outside' / 'evil.sh').exists()

    def test_filename_empty_after_sanitizing(self, upload, request_factory, body_stream):
        """Test that a name with nothing usable left is rejected."""
        request = request_factory('POST', '/upload', {'X-Target-File': '..'})

        response = run_upload(upload, request, body_stream(b'x'))

        assert response.status_code == 400
        assert response.body == b'Invalid filename'

    def test_traversal_directory(self, upload, tmp_path, request_factory, body_stream):
        """Test that a target directory outside the root is forbidden."""
        request = request_factory('POST', '/upload', {
            'X-Target-Dir': '../outside',
            'X-Target-File': 'x.txt',
        })

        response = run_upload(upload, request, body_stream(b'x'))

        assert response.status_code == 403
        assert not (tmp_path / 'outside' / 'x.txt').exists()

    def test_deep_traversal_directory(self, upload, request_factory, body_stream):
        """Test that climbing far above the root is forbidden, not missing."""
        request = request_factory('POST', '/upload', {
            'X-Target-Dir': '../../etc',
            'X-Target-File': 'x.txt',
        })

        response = run_upload(upload, request, body_stream(b'x'))

        assert response.status_code == 403

    def test_missing_directory(self, upload, request_factory, body_stream):
        """Test that an unknown target directory is a bad request."""
        request = request_factory('POST', '/upload', {
            'X-Target-Dir': 'no/such/dir',
            'X-Target-File': 'x.txt',
        })

        response = run_upload(upload, request, body_stream(b'x'))

        assert response.status_code == 400
        assert response.body == b'Target directory does not exist or is inaccessible'

    def test_file_as_directory(self, upload, request_factory, body_stream):
        """Test that a regular file can not be used as target directory."""
        request = request_factory('POST', '/upload', {
            'X-Target-Dir': 'a.txt',
            'X-Target-File': 'x.txt',
        })

        response = run_upload(upload, request, body_stream(b'x'))

        assert response.status_code == 400

    def test_empty_body(self, upload, share_root, request_factory, body_stream):
        """Test that zero byte uploads are rejected and not stored."""
        request = request_factory('POST', '/upload', {'X-Target-File': 'empty.txt'})

        response = run_upload(upload, request, body_stream())

        assert response.status_code == 400
        assert response.body == b'Empty file upload rejected'
        assert not (share_root / 'empty.txt').exists()

    def test_invalid_b64_header(self, upload, request_factory, body_stream):
        """Test that a broken base64 header is reported before any write."""
        request = request_factory('POST', '/upload', {'X-Target-File-B64': '%%%'})

        response = run_upload(upload, request, body_stream(b'x'))

        assert response.status_code == 400
