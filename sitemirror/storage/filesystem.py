"""
Filesystem storage for mirrored resources.

Maps URL paths onto the output directory and refuses any write whose
path would land outside it.
"""

import logging
import os
import posixpath
import shutil
from pathlib import Path
from typing import List, Union
from urllib.parse import unquote

import aiofiles
import aiofiles.os

from ..crawler.sniff import extension_for

INDEX_NAME = 'index.html'


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class PathSafetyError(StorageError):
    """A resource would be written outside the output root."""
    pass


class OutputDirError(StorageError):
    """The output directory cannot be created, cleared or used."""
    pass


class OutputDirExistsError(StorageError):
    """The output directory exists and overwriting was not requested."""
    pass


def prepare_output_dir(path: Union[str, Path], overwrite: bool):
    """
    Make ``path`` an empty directory ready for a new mirror.

    Raises OutputDirExistsError if it already exists and ``overwrite`` is
    false, OutputDirError for every other problem.
    """
    path = Path(path)
    logger = logging.getLogger(__name__)
    try:
        is_dir = path.is_dir()
        exists = is_dir or path.exists()
    except OSError as e:
        raise OutputDirError(f"Cannot access output directory {path}: {e}") from e

    if exists and not is_dir:
        raise OutputDirError(f"Output path is occupied by a file: {path}")

    if is_dir:
        if not overwrite:
            raise OutputDirExistsError(f"Output directory already exists, remove it first: {path}")
        logger.info(f"Clearing output directory: {path}")
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise OutputDirError(f"Cannot remove old output directory {path}: {e}") from e

    logger.info(f"Creating output directory: {path}")
    try:
        path.mkdir()
    except OSError as e:
        raise OutputDirError(f"Cannot create output directory {path}: {e}") from e


def path_components(path: str) -> List[str]:
    return os.path.normpath(path).split(os.sep)


def check_contained(root: str, candidate: str, resolve_symlinks: bool = False):
    """
    Raise PathSafetyError unless ``candidate`` lies inside ``root``.

    Both paths are normalised and compared component by component.
    """
    pairs = [(root, candidate)]
    if resolve_symlinks:
        pairs.append((os.path.realpath(root), os.path.realpath(candidate)))

    for parent, child in pairs:
        p = path_components(parent)
        c = path_components(child)
        if len(c) < len(p):
            raise PathSafetyError(f"Path {child!r} is shorter than output root {parent!r}")
        if c[:len(p)] != p:
            raise PathSafetyError(f"Path {os.path.normpath(child)!r} is outside output root {os.path.normpath(parent)!r}")


def child_path(root: str, name: str) -> str:
    """
    Path of the entry ``name`` directly inside ``root``.

    Raises PathSafetyError when ``name`` would resolve to the root itself,
    a parent, or anything deeper than one level.
    """
    path = os.path.join(root, name)
    check_contained(root, path)
    if len(path_components(path)) != len(path_components(root)) + 1:
        raise PathSafetyError(f"{name!r} does not name a directory inside {root!r}")
    return path


class MirrorStorage:
    """Writes resource bodies under a single output root."""

    def __init__(self, root: Union[str, Path], resolve_symlinks: bool = False):
        self.root = str(root)
        self.resolve_symlinks = resolve_symlinks
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'total_stored': 0,
            'storage_errors': 0,
            'total_size_bytes': 0
        }

    def target_path(self, url_path: str, mime: str) -> str:
        """Local path for a URL path, before any containment check."""
        directory, name = posixpath.split(unquote(url_path or '/'))
        if not name:
            name = INDEX_NAME
        elif '.' not in name:
            name += extension_for(mime)
        if not directory.endswith('/'):
            directory += '/'
        local_dir = directory.replace('/', os.sep)
        return self.root + local_dir + name

    async def save(self, url_path: str, mime: str, body: bytes) -> str:
        """
        Write ``body`` for a URL path and return the file path.

        Raises PathSafetyError or StorageError; nothing is written outside
        the root.
        """
        file_path = self.target_path(url_path, mime)
        try:
            if '\x00' in file_path:
                raise PathSafetyError(f"Path contains a NUL byte: {file_path!r}")
            check_contained(self.root, file_path, self.resolve_symlinks)
        except PathSafetyError:
            self.stats['storage_errors'] += 1
            raise

        try:
            await aiofiles.os.makedirs(os.path.dirname(file_path), exist_ok=True)
            if self.resolve_symlinks:
                check_contained(self.root, file_path, True)
            temp_path = file_path + '.part'
            async with aiofiles.open(temp_path, 'wb') as f:
                await f.write(body)
            await aiofiles.os.replace(temp_path, file_path)
        except (OSError, ValueError) as e:
            self.stats['storage_errors'] += 1
            raise StorageError(f"Failed to write {file_path}: {e}") from e

        self.stats['total_stored'] += 1
        self.stats['total_size_bytes'] += len(body)
        return file_path

    def get_stats(self):
        """Get storage statistics."""
        return self.stats.copy()
