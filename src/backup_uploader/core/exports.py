"""Find the split archive parts of a source's most recent export."""

import glob
import logging
import os
import re
from typing import List, Optional

logger = logging.getLogger(__name__)

# <source>_<timestamp>.tar.zst.<part>
EXPORT_FILENAME_RE = re.compile(r".*_(?P<timestamp>\d+)\.tar\.zst\.\d+$")


def latest_export_timestamp(export_path: str, source_name: str) -> Optional[int]:
    """Return the newest export timestamp for ``source_name``, or None if there are no exports."""
    pattern = os.path.join(glob.escape(export_path), f"{glob.escape(source_name)}_*.tar.zst.*")
    latest: Optional[int] = None
    for path in glob.glob(pattern):
        match = EXPORT_FILENAME_RE.match(os.path.basename(path))
        if match is None:
            continue
        timestamp = int(match.group("timestamp"))
        if latest is None or timestamp > latest:
            latest = timestamp
    return latest


def list_files(export_path: str, source_name: str) -> List[str]:
    """List the parts of the latest export of ``source_name``, in part order."""
    timestamp = latest_export_timestamp(export_path, source_name)
    if timestamp is None:
        logger.info(f"Nothing to upload for source: {source_name}")
        return []

    pattern = os.path.join(
        glob.escape(export_path), f"{glob.escape(source_name)}_{timestamp}.tar.zst.*"
    )
    return sorted(p for p in glob.glob(pattern) if EXPORT_FILENAME_RE.match(os.path.basename(p)))
