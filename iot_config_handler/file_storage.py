"""
Local File Storage
==================

Local disk helpers for the config handler: atomic writes of the generated
telegraf.conf, reading the InfluxDB token file and preparing local backup
folders. Every OS error is surfaced as WriteFailure.
"""

import hashlib
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from .errors import WriteFailure

# Configure logging
logger = logging.getLogger(__name__)


def calculate_content_hash(content: str) -> str:
    """Calculate SHA256 hash of content."""
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


def atomic_write_text(path: Union[str, Path], text: str, mode: int = 0o644) -> Path:
    """
    Write text to a file atomically using a temporary file.

    The content is flushed and fsynced before the temporary file replaces the
    destination, so readers never observe a partial file.

    Args:
        path: Destination file path
        text: Text content to write
        mode: File permissions (octal)
    """
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as tmp:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
        os.chmod(path, mode)
    except OSError as e:
        raise WriteFailure(path, str(e))
    finally:
        if tmp_name and os.path.exists(tmp_name):
            try:
                os.remove(tmp_name)
            except OSError as e:
                logger.warning(f"Could not remove temporary file {tmp_name}: {e}")

    logger.info(f"Wrote {path} ({len(text.encode('utf-8'))} bytes, sha256 {calculate_content_hash(text)[:12]})")
    return path


def read_token(folder: Union[str, Path], file_name: str = "token.txt") -> Optional[str]:
    """Read the InfluxDB token from folder/file_name; None when the file does not exist."""
    token_path = Path(folder) / file_name
    if not token_path.exists():
        return None

    try:
        token = token_path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        raise WriteFailure(token_path, f"InfluxDB token file is unreadable: {e}", operation="read")

    logger.debug(f"InfluxDB token read from {token_path}")
    return token


def dated_backup_name(prefix: str, timestamp: Optional[datetime] = None) -> str:
    """Generate a backup folder name like influx_backup_2024-01-31."""
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)
    return f"{prefix}_{timestamp.strftime('%Y-%m-%d')}"


def ensure_directory(path: Union[str, Path]) -> Path:
    """Create a local directory (and parents) if needed."""
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WriteFailure(path, str(e))
    return path
