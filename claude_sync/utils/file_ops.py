"""File operation utilities."""
import contextlib
import os
import shutil
import tempfile
from pathlib import Path


def safe_write_file(file_path: Path, content: str) -> None:
    """
    Safely write content to a file using a temporary file to ensure atomic writes.

    Args:
        file_path: Path to the target file
        content: Content to write to the file
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    # Create a temporary file in the same directory
    temp_fd, temp_path = tempfile.mkstemp(dir=str(file_path.parent), prefix=f".{file_path.name}.")
    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
            f.write(content)

        # Rename temporary file to target file (atomic on Unix)
        Path(temp_path).replace(file_path)
    except Exception:
        with contextlib.suppress(OSError):
            Path(temp_path).unlink()
        raise


def read_text_or_empty(file_path: Path) -> str:
    """Read a UTF-8 file, returning an empty string if it does not exist."""
    try:
        return Path(file_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""


def write_if_changed(file_path: Path, content: str) -> bool:
    """Write ``content`` unless the file already holds exactly that text.

    Returns:
        bool: True if the file was written
    """
    file_path = Path(file_path)
    if file_path.exists() and read_text_or_empty(file_path) == content:
        return False
    safe_write_file(file_path, content)
    return True


def copy_if_changed(source: Path, destination: Path) -> bool:
    """Copy ``source`` over ``destination`` when their bytes differ.

    Returns:
        bool: True if the destination was written
    """
    source, destination = Path(source), Path(destination)
    if destination.exists() and destination.read_bytes() == source.read_bytes():
        return False
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)
    return True

