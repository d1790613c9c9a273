"""
Storage layer for mirrored resources.
"""

from .filesystem import (
    MirrorStorage,
    StorageError,
    PathSafetyError,
    OutputDirError,
    OutputDirExistsError,
    child_path,
    prepare_output_dir,
)

__all__ = [
    'MirrorStorage', 'StorageError', 'PathSafetyError',
    'OutputDirError', 'OutputDirExistsError', 'child_path', 'prepare_output_dir',
]
