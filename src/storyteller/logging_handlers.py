"""Custom logging handler utilities."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path


class DateStampedFileHandler(logging.FileHandler):
    """File handler writing to ``<directory>/<YYYY-MM-DD>/<prefix>_<time>.log`` (UTC)."""

    def __init__(
        self,
        directory: str | Path,
        *,
        prefix: str = "storyteller",
        encoding: str | None = "utf-8",
        delay: bool = False,
        current_time: datetime | None = None,
    ) -> None:
        timestamp = (current_time or datetime.now(timezone.utc)).astimezone(
            timezone.utc
        )
        date_folder = timestamp.strftime("%Y-%m-%d")
        file_name = f"{prefix}_{timestamp.strftime('%Y-%m-%d_%H-%M-%S')}_UTC.log"
        log_path = (Path(directory) / date_folder / file_name).resolve()

        log_path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(log_path, mode="a", encoding=encoding, delay=delay)


def cleanup_old_logs(
    log_directory: str | Path,
    retention_hours: int,
    logger: logging.Logger | None = None,
) -> int:
    """
    Delete ``*.log`` files older than the retention period.

    Empty date folders left behind are removed too. A retention of 0
    disables cleanup.

    Returns:
        Number of files deleted
    """
    if retention_hours <= 0:
        return 0

    dir_path = Path(log_directory).resolve()
    if not dir_path.exists():
        return 0

    cutoff_time = datetime.now(timezone.utc) - timedelta(hours=retention_hours)
    files_deleted = 0

    for log_file in dir_path.rglob("*.log"):
        try:
            mtime = datetime.fromtimestamp(log_file.stat().st_mtime, tz=timezone.utc)
            if mtime < cutoff_time:
                log_file.unlink()
                files_deleted += 1
        except OSError as e:
            if logger:
                logger.warning(f"Failed to delete {log_file}: {e}")

    for date_dir in dir_path.iterdir():
        if date_dir.is_dir() and not any(date_dir.iterdir()):
            try:
                date_dir.rmdir()
            except OSError:
                continue

    if logger and files_deleted:
        logger.info(f"Log cleanup complete: {files_deleted} file(s) deleted")

    return files_deleted


__all__ = ["DateStampedFileHandler", "cleanup_old_logs"]
