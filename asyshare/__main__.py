import sys
import socket
import asyncio
import logging
import argparse

from asyshare import logger
from asyshare._version import __banner__, __version__
from asyshare.config import ShareConfig, DEFAULT_HOST, DEFAULT_PORT
from asyshare.certs import get_server_ssl_context
from asyshare.handler import create_server

EPILOG = '''
Upload a file:
  curl -X POST -T file_path http://ip:port/upload

Optional / custom file and directory name with:
  curl -X POST -T file_path -H "X-Target-File: desired_filename.ext" -H "X-Target-Dir: dirname" http://ip:port/upload

X-Target-Dir is used as is. Names that are not plain ASCII can be sent base64
encoded (UTF-8) in X-Target-File-B64 and X-Target-Dir-B64 instead.
'''


def get_local_ipv4_addresses():
    addresses = []
    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            ip = info[4][0]
            if ip not in addresses and not ip.startswith('127.'):
                addresses.append(ip)
    except OSError as e:
        logger.debug('Could not resolve local addresses: %s' % e)
    return addresses


def print_startup_messages(config:ShareConfig, port:int):
    if config.host in ('0.0.0.0', '::'):
        print(' * Running on all addresses (%s)' % config.host)
        print(' * Running on %s://127.0.0.1:%s' % (config.scheme, port))
        for ip in get_local_ipv4_addresses():
            print(' * Running on %s://%s:%s' % (config.scheme, ip, port))
    else:
        print(' * Running on %s://%s:%s' % (config.scheme, config.host, port))
    print(' * Serving files from %s' % config.root)
    print('Press CTRL+C to quit\n')


async def amain(config:ShareConfig):
    ssl_ctx = None
    if config.tls is True:
        ssl_ctx, err = get_server_ssl_context(config.host)
        if err is not None:
            raise err

    server = create_server(config, ssl_ctx)
    await server.start()
    print_startup_messages(config, server.bound_port())
    try:
        await server.serve()
    finally:
        await server.terminate()


def main():
    parser = argparse.ArgumentParser(
        description='A simple upload server.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG
    )
    parser.add_argument('-d', '--directory', default='.', help='Root directory (default: current directory)')
    parser.add_argument('-l', '--host', default=DEFAULT_HOST, help='Host to bind the server to (default: %s)' % DEFAULT_HOST)
    parser.add_argument('-p', '--port', type=int, default=DEFAULT_PORT, help='Port to host the server on (default: %s)' % DEFAULT_PORT)
    parser.add_argument('--tls', action='store_true', help='Use TLS encryption with a self-signed certificate')
    parser.add_argument('--max-upload-size', type=int, default=0, help='Maximum upload size in bytes, 0 means unlimited')
    parser.add_argument('-v', '--verbose', action='count', default=0, help='Verbosity')
    parser.add_argument('-s', '--silent', action='store_true', help='dont print banner')
    parser.add_argument('--version', action='version', version='asyshare %s' % __version__)

    args = parser.parse_args()

    if args.silent is False:
        print(__banner__)

    if args.verbose >= 1:
        logger.setLevel(logging.DEBUG)

    try:
        config = ShareConfig.from_args(args)
    except ValueError as e:
        print('Error: %s' % e)
        sys.exit(1)

    try:
        asyncio.run(amain(config))
    except KeyboardInterrupt:
        print('\nServer stopped by user')
    except Exception as e:
        print('Failed to start server: %s' % e)
        sys.exit(1)


if __name__ == '__main__':
    main()
