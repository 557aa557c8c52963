"""
FileSystemHandler module for managing file system operations.
This module handles bulk copies with progress, atomic writes and downloads.
"""

import os
import shutil
import logging
import configparser
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import requests

from ..models.errors import DownloadError, DownloadTooSmallError
from ...shared.progress_models import TransferProgress

# Initialize logger for the module
logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024
DOWNLOAD_CHUNK_SIZE = 8192
DOWNLOAD_TIMEOUT = 300


class FileSystemHandler:

    @staticmethod
    def scan_tree(source: Path) -> Tuple[List[Tuple[Path, int]], int]:
        """
        Walk a directory and list every regular file with its size.

        Returns:
            (files, total_bytes): files as (relative path, size) pairs, sorted
        """
        files: List[Tuple[Path, int]] = []
        total = 0
        for dirpath, _dirnames, filenames in os.walk(source):
            for name in filenames:
                full = Path(dirpath) / name
                if full.is_symlink() or not full.is_file():
                    continue
                size = full.stat().st_size
                files.append((full.relative_to(source), size))
                total += size
        files.sort()
        return files, total

    @staticmethod
    def copy_tree_with_progress(source: Path, destination: Path,
                                progress_callback: Optional[Callable[[TransferProgress], None]] = None) -> TransferProgress:
        """
        Copy every file under source into destination.

        Existing destination files are removed before being replaced, so a file
        left read-only by an earlier install cannot block the copy. Progress is
        reported in bytes after each chunk and always ends at 1.0.

        Raises:
            FileNotFoundError: source is not a directory
            OSError: any file could not be copied
        """
        source = Path(source)
        destination = Path(destination)
        if not source.is_dir():
            raise FileNotFoundError(f"Source is not a directory: {source}")

        files, total = FileSystemHandler.scan_tree(source)
        progress = TransferProgress(bytes_total=total, files_total=len(files))
        logger.info(f"Copying {len(files)} files ({total} bytes) from {source} to {destination}")
        destination.mkdir(parents=True, exist_ok=True)

        for relative, _size in files:
            src = source / relative
            dst = destination / relative
            progress.current_file = relative.as_posix()
            dst.parent.mkdir(parents=True, exist_ok=True)
            if dst.exists() or dst.is_symlink():
                dst.unlink()
            with open(src, 'rb') as fin, open(dst, 'wb') as fout:
                while True:
                    chunk = fin.read(COPY_CHUNK_SIZE)
                    if not chunk:
                        break
                    fout.write(chunk)
                    progress.bytes_done += len(chunk)
                    if progress_callback:
                        progress_callback(progress)
            shutil.copystat(src, dst)
            progress.files_done += 1
            if progress_callback:
                progress_callback(progress)

        # A tree of empty files never hit the chunk loop above
        progress.bytes_done = total
        progress.current_file = None
        if progress_callback:
            progress_callback(progress)
        logger.info(f"Copied {progress.files_done} files to {destination}")
        return progress

    @staticmethod
    def atomic_write_text(path: Path, content: str) -> None:
        """Write a text file through a temp file and os.replace."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                f.write(content)
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    @staticmethod
    def write_ini_atomic(path: Path, sections: Mapping[str, Mapping[str, object]]) -> None:
        """
        Write an INI file (key=value, no spaces around '=') atomically.
        Key case is preserved.
        """
        parser = configparser.ConfigParser(interpolation=None)
        parser.optionxform = str
        for section, values in sections.items():
            parser[section] = {key: str(value) for key, value in values.items()}

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                parser.write(f, space_around_delimiters=False)
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        logger.debug(f"Wrote settings file {path}")

    @staticmethod
    def read_ini(path: Path) -> Dict[str, Dict[str, str]]:
        """Read an INI file into nested dicts. Missing files read as empty."""
        parser = configparser.ConfigParser(interpolation=None)
        parser.optionxform = str
        parser.read(path, encoding='utf-8')
        return {section: dict(parser[section]) for section in parser.sections()}

    @staticmethod
    def get_directory_size(path: Path) -> Optional[int]:
        """Get the total size of a directory in bytes."""
        try:
            total_size = 0
            for entry in os.scandir(path):
                if entry.is_dir(follow_symlinks=False):
                    total_size += FileSystemHandler.get_directory_size(Path(entry.path)) or 0
                elif entry.is_file(follow_symlinks=False):
                    total_size += entry.stat().st_size
            return total_size
        except Exception as e:
            logger.error(f"Failed to get directory size for {path}: {e}")
            return None

    @staticmethod
    def delete_file(path: Path) -> bool:
        """
        Delete a file.

        Returns:
            bool: True if file was deleted successfully, False otherwise
        """
        try:
            if os.path.exists(path):
                os.remove(path)
                return True
            return False
        except Exception as e:
            logger.error(f"Error deleting file {path}: {e}")
            return False

    @staticmethod
    def delete_directory(path: Path) -> bool:
        """
        Delete a directory recursively.

        Returns:
            bool: True if directory was deleted successfully, False otherwise
        """
        try:
            if os.path.exists(path):
                shutil.rmtree(path)
                return True
            return False
        except Exception as e:
            logger.error(f"Error deleting directory {path}: {e}")
            return False

    @staticmethod
    def clear_directory(path: Path) -> int:
        """Remove everything inside a directory but keep the directory. Returns entries removed."""
        removed = 0
        if not path.is_dir():
            return removed
        for item in path.iterdir():
            try:
                if item.is_dir() and not item.is_symlink():
                    shutil.rmtree(item)
                else:
                    item.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Could not remove {item}: {e}")
        return removed

    @staticmethod
    def download_file(url: str, destination_path: Path, min_size: int = 0,
                      progress_callback: Optional[Callable[[TransferProgress], None]] = None,
                      timeout: float = DOWNLOAD_TIMEOUT) -> Path:
        """
        Download a URL to destination_path with a streaming GET.

        Always re-downloads; partial files are removed on any failure.

        Raises:
            DownloadError: network or HTTP failure, or the file could not be written
            DownloadTooSmallError: the payload is smaller than min_size
        """
        destination_path = Path(destination_path)
        logger.info(f"Downloading {url} to {destination_path}...")
        progress = TransferProgress(files_total=1, current_file=destination_path.name)

        try:
            destination_path.parent.mkdir(parents=True, exist_ok=True)
            with requests.get(url, stream=True, timeout=timeout) as r:
                r.raise_for_status()
                progress.bytes_total = int(r.headers.get('content-length', 0) or 0)
                with open(destination_path, 'wb') as f:
                    for chunk in r.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if not chunk:
                            continue
                        f.write(chunk)
                        progress.bytes_done += len(chunk)
                        if progress_callback:
                            progress_callback(progress)
        except requests.exceptions.RequestException as e:
            logger.error(f"Download failed: {e}")
            FileSystemHandler.delete_file(destination_path)
            raise DownloadError(f"Download failed for {url}: {e}") from e
        except OSError as e:
            logger.error(f"Error writing download to {destination_path}: {e}")
            FileSystemHandler.delete_file(destination_path)
            raise DownloadError(f"Could not write {destination_path}: {e}") from e

        size = destination_path.stat().st_size
        if size < min_size:
            logger.error(f"Downloaded file too small: {size} bytes (minimum {min_size})")
            FileSystemHandler.delete_file(destination_path)
            raise DownloadTooSmallError(size, min_size)

        progress.files_done = 1
        if progress_callback:
            progress_callback(progress)
        logger.info(f"Download complete: {destination_path} ({size} bytes)")
        return destination_path
