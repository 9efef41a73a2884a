import os
import posixpath
import logging
from typing import List, Optional

from asyshare.errors import ForbiddenError
from asyshare.ingestor import is_partial_upload

logger = logging.getLogger('asyshare.lister')


def display_name(name:str) -> str:
    """Lossy text form of a name that may carry surrogate escapes from the filesystem."""
    return name.encode('utf-8', errors='surrogateescape').decode('utf-8', errors='replace')


class DirectoryEntry:
    def __init__(self, name:str, url:str, is_dir:bool):
        self.name = name
        self.url = url
        self.is_dir = is_dir

    def sort_key(self):
        # directories first, then case-insensitive by name
        return (not self.is_dir, self.name.casefold(), self.name)

    def __repr__(self):
        return 'DirectoryEntry(name=%r, url=%r, is_dir=%r)' % (self.name, self.url, self.is_dir)


class DirectoryListing:
    def __init__(self, current_path:str, parent_path:Optional[str], entries:List[DirectoryEntry]):
        self.current_path = current_path
        self.parent_path = parent_path
        self.entries = entries

    @property
    def names(self):
        return [entry.name for entry in self.entries]


class DirectoryLister:
    def __init__(self, root:str):
        self.root = root

    @staticmethod
    def entry_url(cleaned_relative:str, name:str) -> str:
        return '/' + posixpath.join(cleaned_relative, name).replace('\\', '/')

    def parent_link(self, resolved_dir:str, cleaned_relative:str) -> Optional[str]:
        if resolved_dir == self.root or cleaned_relative == '':
            return None
        parent = posixpath.dirname(cleaned_relative.replace('\\', '/'))
        if parent == '':
            return '/'
        return '/' + parent

    def list(self, resolved_dir:str, cleaned_relative:str):
        """
        Enumerates the immediate children of an already resolved directory.

        Returns ``(DirectoryListing, None)`` or ``(None, ForbiddenError)`` if
        the directory itself can not be opened. Entries whose type can not
        be determined are skipped, as are uploads still in progress.
        """
        entries = []
        try:
            with os.scandir(resolved_dir) as it:
                for entry in it:
                    if is_partial_upload(entry.name):
                        continue
                    try:
                        is_dir = entry.is_dir()
                    except OSError as e:
                        logger.debug("Could not get file type for '%s': %s" % (entry.name, e))
                        continue

                    entries.append(DirectoryEntry(
                        entry.name,
                        DirectoryLister.entry_url(cleaned_relative, entry.name),
                        is_dir
                    ))
        except OSError as e:
            logger.error('Failed to read directory %s: %s' % (resolved_dir, e))
            return None, ForbiddenError("Cannot read directory listing", innerexception=e)

        entries.sort(key=DirectoryEntry.sort_key)
        listing = DirectoryListing(
            cleaned_relative.replace('\\', '/'),
            self.parent_link(resolved_dir, cleaned_relative),
            entries
        )
        return listing, None
