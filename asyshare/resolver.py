"""
Traversal-safe mapping of client supplied paths onto the shared root.

Every filesystem access made on behalf of a client goes through
:class:`PathResolver`. A path is only handed out after it has been
canonicalized by the filesystem (symlinks resolved) and verified to be the
root itself or one of its descendants.
"""

import os
import posixpath
import logging

from asyshare.errors import NotFoundError, ForbiddenError, BadRequestError, AccessError

logger = logging.getLogger('asyshare.resolver')


class PathResolver:
    def __init__(self, root:str):
        self.root = root

    @staticmethod
    def clean_relative(requested:str) -> str:
        """
        Lexically normalizes a requested path, without touching the filesystem.

        Backslashes count as separators, leading separators are dropped and
        ``.``/``..``/empty segments are collapsed. The root itself is
        represented by the empty string. The result can still start with
        ``..`` if the request climbs above the root.
        """
        if not requested:
            return ''
        path = requested.replace('\\', '/').lstrip('/')
        if path == '':
            return ''
        path = posixpath.normpath(path)
        if path == '.':
            return ''
        return path

    @staticmethod
    def escapes_root(cleaned:str) -> bool:
        return cleaned == '..' or cleaned.startswith('../')

    def is_contained(self, path:str) -> bool:
        """Structural (per path component) check that path is root or below it."""
        try:
            return os.path.commonpath([self.root, path]) == self.root
        except ValueError:
            # different drives or mixed absolute/relative paths
            return False

    def canonicalize(self, candidate:str):
        try:
            return os.path.normcase(os.path.realpath(candidate, strict=True)), None
        except (FileNotFoundError, NotADirectoryError) as e:
            return None, NotFoundError(innerexception=e)
        except OSError as e:
            return None, AccessError(innerexception=e)

    def resolve(self, requested:str):
        """
        Returns ``(resolved_path, None)`` or ``(None, err)`` where err is one
        of NotFoundError, ForbiddenError, BadRequestError or AccessError.
        """
        if requested is not None and '\x00' in requested:
            return None, BadRequestError("Invalid path")

        cleaned = PathResolver.clean_relative(requested)
        if PathResolver.escapes_root(cleaned) is True:
            logger.debug('Path traversal attempt detected: %r' % requested)
            return None, ForbiddenError()

        candidate = self.root
        if cleaned != '':
            candidate = os.path.join(self.root, *cleaned.split('/'))

        resolved, err = self.canonicalize(candidate)
        if err is not None:
            if isinstance(err, NotFoundError):
                logger.debug('Path not found: %s' % candidate)
            else:
                logger.error('Error canonicalizing requested path %s: %s' % (candidate, err.innerexception))
            return None, err

        if self.is_contained(resolved) is False:
            logger.debug('Path traversal attempt detected: %r resolves to %s' % (requested, resolved))
            return None, ForbiddenError()

        return resolved, None

    def resolve_directory(self, requested:str):
        """Same as :meth:`resolve`, but the result must be a directory."""
        resolved, err = self.resolve(requested)
        if err is not None:
            return None, err
        if not os.path.isdir(resolved):
            logger.debug('Target path %s is not a directory' % resolved)
            return None, BadRequestError("Target path is not a directory")
        return resolved, None

    def join_child(self, directory:str, filename:str):
        """
        Appends a (sanitized) filename to an already resolved directory.

        The file itself does not need to exist. The name must stay a single
        path component directly below ``directory``.
        """
        if not filename or filename in ('.', '..') or '/' in filename or os.sep in filename:
            return None, BadRequestError("Invalid filename")
        if (os.altsep is not None and os.altsep in filename) or '\x00' in filename:
            return None, BadRequestError("Invalid filename")

        path = os.path.join(directory, filename)
        if os.path.dirname(path) != directory or self.is_contained(path) is False:
            return None, ForbiddenError()
        return path, None

    def resolve_new_file(self, requested_dir:str, filename:str):
        """Resolves only the parent directory, then appends the filename."""
        directory, err = self.resolve_directory(requested_dir)
        if err is not None:
            return None, err
        return self.join_child(directory, filename)
