"""
Packaging of extracted attachments for download
"""
import io
import posixpath
import re
import zipfile
from datetime import date
from typing import List, Optional, Sequence

from loguru import logger

from models import DEFAULT_FILENAME, FileToDownload, PreparedDownload

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def _clean_segment(segment: str) -> str:
    return _UNSAFE_CHARS.sub('_', segment).rstrip('.').strip()


def sanitize_filename(filename: str) -> str:
    """Replace characters that are unsafe in filenames"""
    return _clean_segment(filename or "") or DEFAULT_FILENAME


def sanitize_path(path: str) -> str:
    """Normalise a folder path into safe, relative, slash-separated segments"""
    segments = (_clean_segment(s) for s in (path or "").split('/'))
    return '/'.join(s for s in segments if s and s not in ('.', '..'))


def archive_entry_name(file: FileToDownload) -> str:
    folder = sanitize_path(file.suggested_path)
    filename = sanitize_filename(file.suggested_filename)
    return f"{folder}/{filename}" if folder else filename


def _unique_name(name: str, used: set) -> str:
    if name not in used:
        return name
    stem, ext = posixpath.splitext(name)
    counter = 2
    while f"{stem} ({counter}){ext}" in used:
        counter += 1
    return f"{stem} ({counter}){ext}"


def prepare_single_file(file: FileToDownload) -> bytes:
    return file.content


def prepare_files_for_download(files: Sequence[FileToDownload]) -> bytes:
    """Build a ZIP archive with each file stored under its suggested path"""
    buffer = io.BytesIO()
    used = set()
    with zipfile.ZipFile(buffer, 'w', compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for file in files:
            name = _unique_name(archive_entry_name(file), used)
            used.add(name)
            archive.writestr(name, file.content)
    logger.debug(f"Packed {len(used)} file(s) into archive")
    return buffer.getvalue()


def build_download(files: List[FileToDownload], today: Optional[date] = None) -> PreparedDownload:
    """Single files pass through untouched, several files are zipped"""
    if not files:
        raise ValueError("No files to download")

    if len(files) == 1:
        return PreparedDownload(
            filename=sanitize_filename(files[0].suggested_filename),
            content=prepare_single_file(files[0]),
            content_type="application/octet-stream"
        )

    today = today or date.today()
    return PreparedDownload(
        filename=f"attachments_{today.isoformat()}.zip",
        content=prepare_files_for_download(files),
        content_type="application/zip"
    )
