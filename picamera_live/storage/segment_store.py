"""
On-disk segment store.

Owns the segment directory and an in-memory index of the segments in it.
Segment ids are assigned monotonically and survive restarts because they are
encoded in the file names.
"""

import shutil
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..utils.config import Config
from ..utils.exceptions import SegmentIntegrityError, SegmentNameError, StorageError
from ..utils.logger import get_logger
from ..state.models import Segment


logger = get_logger(__name__)


def load_segments(segment_dir: Path) -> tuple[dict[int, Segment], int]:
    """
    Build a segment index from the files in a directory.

    Files that do not follow the segment naming scheme are skipped.

    Args:
        segment_dir: Directory to scan

    Returns:
        Tuple of (index mapping id to segment, highest id or 0)

    Raises:
        StorageError: If the directory cannot be listed
    """
    try:
        entries = list(Path(segment_dir).iterdir())
    except OSError as e:
        raise StorageError(f"Cannot read segment directory {segment_dir}: {e}")

    segments: dict[int, Segment] = {}
    last_segment_id = 0
    for entry in entries:
        try:
            segment = Segment.from_file_name(entry.name)
        except SegmentNameError:
            continue

        segments[segment.id] = segment
        if segment.id > last_segment_id:
            last_segment_id = segment.id

    return segments, last_segment_id


def _copy_file(source: Path, destination: Path) -> int:
    """Copy a file's bytes and return the number of bytes written."""
    with open(source, 'rb') as src, open(destination, 'wb') as dst:
        shutil.copyfileobj(src, dst)
        return dst.tell()


class SegmentStore:
    """
    Directory of playable segments with a thread-safe recency index.

    The capture monitor publishes into the store through ``video_recorded``;
    HTTP handlers read from it with ``latest_segments``.
    """

    def __init__(self, segment_dir: Path, max_size_mb: int = 1024):
        """
        Initialize the store by scanning its directory.

        Args:
            segment_dir: Directory holding segment files
            max_size_mb: Size limit for stored segments (0 = unlimited)

        Raises:
            StorageError: If the directory cannot be read
        """
        self.segment_dir = Path(segment_dir)
        self.max_size_bytes = max_size_mb * 1024 * 1024

        self._segments, self._last_segment_id = load_segments(self.segment_dir)
        self._sizes = {
            segment_id: self._file_size(segment.name)
            for segment_id, segment in self._segments.items()
        }
        self._usage_bytes = sum(self._sizes.values())

        # Guards the index, sizes and last id
        self._lock = threading.Lock()
        # Serializes writers so id allocation and indexing happen in call order
        self._write_lock = threading.Lock()

        logger.info(
            f"Loaded {len(self._segments)} segments from {self.segment_dir} "
            f"(last id: {self._last_segment_id})"
        )

    def _file_size(self, name: str) -> int:
        try:
            return (self.segment_dir / name).stat().st_size
        except OSError as e:
            logger.warning(f"Cannot stat segment {name}: {e}")
            return 0

    @property
    def last_segment_id(self) -> int:
        """Get the highest id assigned so far."""
        with self._lock:
            return self._last_segment_id

    @property
    def segment_count(self) -> int:
        """Get number of indexed segments."""
        with self._lock:
            return len(self._segments)

    def latest_segments(self, count: int) -> list[Segment]:
        """
        Get the segments among the ``count`` most recently assigned ids.

        Ids missing from the index are skipped, so fewer than ``count``
        segments may be returned.

        Args:
            count: Size of the id window

        Returns:
            Segments in ascending id order
        """
        with self._lock:
            last_segment_id = self._last_segment_id
            first_segment_id = max(last_segment_id - count + 1, 1)
            return [
                self._segments[segment_id]
                for segment_id in range(first_segment_id, last_segment_id + 1)
                if segment_id in self._segments
            ]

    def add_segment(self, file_path: Path, created: datetime, modified: datetime) -> Segment:
        """
        Copy a converted file into the store and index it.

        Args:
            file_path: Converted segment file to copy
            created: Time of the segment's first byte
            modified: Time of the segment's last byte

        Returns:
            The newly indexed segment

        Raises:
            StorageError: If the source cannot be read or the copy fails
            SegmentIntegrityError: If fewer bytes were copied than the source holds
        """
        start = time.monotonic()
        file_path = Path(file_path)

        with self._write_lock:
            try:
                source_size = file_path.stat().st_size
            except OSError as e:
                raise StorageError(f"Cannot read segment source {file_path}: {e}")

            with self._lock:
                segment_id = self._last_segment_id + 1

            segment = Segment.create(
                segment_id,
                created,
                modified - created,
                extension=file_path.suffix or '.ts'
            )
            segment_path = self.segment_dir / segment.name

            try:
                copied = _copy_file(file_path, segment_path)
            except OSError as e:
                segment_path.unlink(missing_ok=True)
                raise StorageError(f"Cannot copy {file_path} to {segment_path}: {e}")

            if copied != source_size:
                segment_path.unlink(missing_ok=True)
                raise SegmentIntegrityError(
                    f"Could not copy entire file {file_path} ({copied} of {source_size} bytes)",
                    expected=source_size,
                    copied=copied
                )

            with self._lock:
                self._last_segment_id = segment_id
                self._segments[segment_id] = segment
                self._sizes[segment_id] = copied
                self._usage_bytes += copied

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(f"Added segment {segment_id} in {elapsed_ms:.0f} ms")

        self.enforce_size_limit()

        return segment

    def video_recorded(self, file_path: Path, created: datetime, modified: datetime) -> None:
        """Subscriber hook called by the capture monitor for each converted chunk."""
        self.add_segment(file_path, created, modified)

    def segment_path(self, name: str) -> Optional[Path]:
        """
        Resolve the file for an indexed segment name.

        Returns:
            Path to the segment file, or None if the name is not indexed
        """
        try:
            segment = Segment.from_file_name(name)
        except SegmentNameError:
            return None

        with self._lock:
            indexed = self._segments.get(segment.id)

        if indexed is None or indexed.name != name:
            return None

        return self.segment_dir / name

    def disk_usage_bytes(self) -> int:
        """Get total size of indexed segment files in bytes."""
        with self._lock:
            return self._usage_bytes

    def enforce_size_limit(self) -> int:
        """
        Remove the oldest segments while the store exceeds its size limit.

        The newest segment is never removed.

        Returns:
            Number of segments removed
        """
        if self.max_size_bytes <= 0:
            return 0

        with self._lock:
            ordered = sorted(self._segments.values(), key=lambda s: s.id)

        removed = 0
        for segment in ordered[:-1]:
            with self._lock:
                if self._usage_bytes <= self.max_size_bytes:
                    break
                self._segments.pop(segment.id, None)
                self._usage_bytes -= self._sizes.pop(segment.id, 0)
                usage = self._usage_bytes

            try:
                (self.segment_dir / segment.name).unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to delete segment {segment.name}: {e}")

            removed += 1

        if removed:
            logger.info(f"Pruned {removed} old segments (usage now {usage / (1024 * 1024):.1f}MB)")

        return removed


def create_segment_store(config: Config) -> SegmentStore:
    """
    Factory function to create a segment store from configuration.

    Args:
        config: Application configuration

    Returns:
        SegmentStore instance
    """
    return SegmentStore(
        config.get_segments_dir(),
        max_size_mb=config.get('storage.max_size_mb', 1024)
    )
