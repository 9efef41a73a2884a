import os
from dataclasses import dataclass


DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 7070
DEFAULT_CHUNK_SIZE = 512 * 1024
DEFAULT_FLUSH_THRESHOLD = 4 * 1024 * 1024


@dataclass(frozen=True)
class ShareConfig:
    """Process-lifetime settings. Built once at startup, never mutated.

    Every connection handler receives the same instance, so concurrent
    requests read it without any locking.
    """
    root: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    tls: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE
    flush_threshold: int = DEFAULT_FLUSH_THRESHOLD
    max_upload_size: int = 0

    @staticmethod
    def canonical_root(directory:str) -> str:
        if directory is None or directory == '':
            directory = '.'
        root = os.path.normcase(os.path.realpath(directory))
        if not os.path.exists(root):
            raise ValueError(f"Root directory does not exist: {directory}")
        if not os.path.isdir(root):
            raise ValueError(f"Root path is not a directory: {directory}")
        return root

    @staticmethod
    def from_directory(directory:str, **kwargs) -> 'ShareConfig':
        return ShareConfig(ShareConfig.canonical_root(directory), **kwargs)

    @staticmethod
    def from_args(args) -> 'ShareConfig':
        if args.port < 0 or args.port > 65535:
            raise ValueError(f"Port must be between 0 and 65535, got {args.port}")
        if args.max_upload_size < 0:
            raise ValueError(f"max-upload-size must not be negative, got {args.max_upload_size}")

        return ShareConfig.from_directory(
            args.directory,
            host = args.host,
            port = args.port,
            tls = args.tls,
            max_upload_size = args.max_upload_size,
        )

    @property
    def scheme(self):
        return 'https' if self.tls is True else 'http'
