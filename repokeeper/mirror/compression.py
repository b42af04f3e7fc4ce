"""
Archive handlers for finished working copies.

Supports:
- zip: Deflate-compressed zip
- zstd: Tar stream compressed with zstandard (.tar.zst)

Any other non-empty compression value falls back to zip. Archives hold the
working copy's contents relative to its root, so extracting into an empty
directory reproduces the working copy.
"""

import os
import shutil
import stat
import tarfile
import zipfile
from pathlib import Path

import zstandard as zstd


DEFAULT_ZSTD_LEVEL = 3

ARCHIVE_SUFFIXES = {
    'zip': '.zip',
    'zstd': '.tar.zst',
}


class CompressionError(Exception):
    """Raised when archive creation or extraction fails."""
    pass


def is_compression_enabled(compression: str) -> bool:
    return bool(compression) and compression != 'none'


def get_archive_suffix(compression: str) -> str:
    """
    Archive suffix for a compression value.

    Args:
        compression: 'zip', 'zstd' or anything else (treated as zip)

    Returns:
        '.tar.zst' for zstd, '.zip' otherwise
    """
    return ARCHIVE_SUFFIXES.get(compression, '.zip')


def strip_archive_suffix(filename: str, compression: str) -> str:
    """Remove the archive suffix for a compression value, if present."""
    suffix = get_archive_suffix(compression)
    if filename.endswith(suffix):
        return filename[:-len(suffix)]
    return filename


def compress_working_copy(working_copy: str, compression: str, zstd_level: int = DEFAULT_ZSTD_LEVEL) -> str:
    """
    Pack a working copy into <working_copy><suffix> and delete the original.

    Args:
        working_copy: Directory to archive
        compression: Compression value of the destination
        zstd_level: Compression level for zstd archives

    Returns:
        Path to the created archive

    Raises:
        CompressionError: If the working copy cannot be archived or removed.
            A partially written archive is left in place.
    """
    source = Path(working_copy)
    if not source.is_dir():
        raise CompressionError(f"Working copy not found: {working_copy}")

    archive_path = f"{working_copy}{get_archive_suffix(compression)}"

    try:
        if compression == 'zstd':
            _create_tar_zst(source, archive_path, zstd_level)
        else:
            _create_zip(source, archive_path)
    except (OSError, zipfile.BadZipFile, tarfile.TarError, zstd.ZstdError) as e:
        raise CompressionError(f"Failed to create archive {archive_path}: {e}")

    try:
        shutil.rmtree(source)
    except OSError as e:
        raise CompressionError(f"Archive created but failed to remove {working_copy}: {e}")

    return archive_path


def _create_zip(source: Path, archive_path: str):
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for item in sorted(source.rglob('*')):
            arcname = item.relative_to(source).as_posix()
            if item.is_symlink():
                # Stored as the link itself, the way tar does; the target may not exist
                info = zipfile.ZipInfo(arcname)
                info.create_system = 3
                info.external_attr = (stat.S_IFLNK | 0o777) << 16
                zipf.writestr(info, os.readlink(item))
            else:
                # Directory entries keep empty directories (git needs refs/, objects/ ...)
                zipf.write(item, arcname)


def _is_zip_symlink(info: zipfile.ZipInfo) -> bool:
    return info.create_system == 3 and stat.S_ISLNK(info.external_attr >> 16)


def _extract_zip(archive_path: str, destination: str):
    root = os.path.realpath(destination)

    with zipfile.ZipFile(archive_path, 'r') as zipf:
        for info in zipf.infolist():
            if not _is_zip_symlink(info):
                zipf.extract(info, destination)
                continue

            link_path = os.path.join(root, *info.filename.split('/'))
            link_target = zipf.read(info).decode('utf-8')
            resolved = os.path.realpath(os.path.join(os.path.dirname(link_path), link_target))
            if os.path.isabs(link_target) or os.path.commonpath([root, resolved]) != root:
                raise CompressionError(f"Symlink {info.filename} points outside the archive: {link_target}")

            os.makedirs(os.path.dirname(link_path), exist_ok=True)
            os.symlink(link_target, link_path)


def _create_tar_zst(source: Path, archive_path: str, level: int):
    compressor = zstd.ZstdCompressor(level=level)

    with open(archive_path, 'wb') as raw:
        with compressor.stream_writer(raw, closefd=False) as writer:
            with tarfile.open(fileobj=writer, mode='w|') as tar:
                for item in sorted(source.iterdir()):
                    tar.add(item, arcname=item.name, recursive=True)


def extract_archive(archive_path: str, destination: str) -> str:
    """
    Extract a .zip or .tar.zst archive into a directory.

    Args:
        archive_path: Archive created by compress_working_copy
        destination: Directory to extract into (created if missing)

    Returns:
        The destination directory

    Raises:
        CompressionError: If the archive type is unknown or extraction fails
    """
    os.makedirs(destination, exist_ok=True)

    try:
        if archive_path.endswith('.tar.zst'):
            decompressor = zstd.ZstdDecompressor()
            with open(archive_path, 'rb') as raw:
                with decompressor.stream_reader(raw) as reader:
                    with tarfile.open(fileobj=reader, mode='r|') as tar:
                        tar.extractall(destination, filter='data')
        elif archive_path.endswith('.zip'):
            _extract_zip(archive_path, destination)
        else:
            raise CompressionError(f"Unknown archive type: {archive_path}")
    except (OSError, zipfile.BadZipFile, tarfile.TarError, zstd.ZstdError) as e:
        raise CompressionError(f"Failed to extract {archive_path}: {e}")

    return destination
