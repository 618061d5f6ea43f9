"""
Folder <-> zip conversion for directory payloads.

A folder travels as a single zip whose display name ends in
``.folder.zip``; the receiver recognises the suffix and unpacks it.
"""

import logging
import os
import tempfile
import uuid
import zipfile
from pathlib import Path

from lanshare.config import FOLDER_ARCHIVE_SUFFIX
from lanshare.errors import ArchiveError

logger = logging.getLogger(__name__)


def is_folder_archive(file_name: str) -> bool:
    return file_name.lower().endswith(FOLDER_ARCHIVE_SUFFIX)


def archive_name_for(folder_name: str) -> str:
    return f"{folder_name}{FOLDER_ARCHIVE_SUFFIX}"


def original_folder_name(file_name: str) -> str:
    if is_folder_archive(file_name):
        return file_name[: -len(FOLDER_ARCHIVE_SUFFIX)]
    return os.path.splitext(file_name)[0]


def folder_name_of(folder_path: str | os.PathLike) -> str:
    return Path(os.path.abspath(folder_path)).name


def archive_folder(folder_path: str | os.PathLike, temp_dir: str | None = None) -> str:
    """Zip ``folder_path`` into a new temporary file and return its path.

    The folder's own name is the root entry. Entries are written in sorted
    order with fast (level 1) deflate compression.
    """
    folder = Path(os.path.abspath(folder_path))
    if not folder.is_dir():
        raise ArchiveError(f"Folder not found: {folder_path}")

    root = folder.name
    archive_path = os.path.join(
        temp_dir or tempfile.gettempdir(),
        f"lanshare_{root}_{uuid.uuid4().hex}.zip",
    )

    try:
        with zipfile.ZipFile(
            archive_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=1
        ) as zf:
            zf.write(folder, f"{root}/")
            for dirpath, dirnames, filenames in os.walk(folder):
                dirnames.sort()
                rel_dir = Path(dirpath).relative_to(folder)
                for name in dirnames:
                    arcname = (Path(root) / rel_dir / name).as_posix() + "/"
                    zf.write(os.path.join(dirpath, name), arcname)
                for name in sorted(filenames):
                    arcname = (Path(root) / rel_dir / name).as_posix()
                    zf.write(os.path.join(dirpath, name), arcname)
    except (OSError, zipfile.BadZipFile) as e:
        if os.path.exists(archive_path):
            os.remove(archive_path)
        raise ArchiveError(f"Failed to archive {folder}: {e}") from e

    logger.debug(f"Archived {folder} -> {archive_path}")
    return archive_path


def extract_archive(archive_path: str | os.PathLike, destination_dir: str | os.PathLike) -> str:
    """Unpack a folder archive into ``destination_dir``, overwriting conflicts.

    Returns ``destination_dir/<root folder name>`` as recorded by the first
    entry, or ``destination_dir`` if the archive is empty.
    """
    if not os.path.isfile(archive_path):
        raise ArchiveError(f"Archive not found: {archive_path}")

    os.makedirs(destination_dir, exist_ok=True)
    try:
        with zipfile.ZipFile(archive_path) as zf:
            names = zf.namelist()
            root = names[0].replace("\\", "/").split("/")[0] if names else ""
            # extractall drops absolute prefixes and ".." components
            zf.extractall(destination_dir)
    except (OSError, zipfile.BadZipFile) as e:
        raise ArchiveError(f"Failed to extract {archive_path}: {e}") from e

    if root and root not in (".", ".."):
        return os.path.join(destination_dir, root)
    return os.fspath(destination_dir)
