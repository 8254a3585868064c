import os
import uuid
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel

from utils.clock import utc_timestamp
from utils.result import Result

logger = logging.getLogger(__name__)


class FileRecord(BaseModel):
    """
    Metadata of a stored spreadsheet.

    Attributes:
        filename: Name shown to clients and used in Content-Disposition
        filepath: Absolute path of the file on disk
        created_at: ISO-8601 UTC creation time
    """
    filename: str
    filepath: str
    created_at: str

    @classmethod
    def create(cls, filename: str, filepath: str) -> "FileRecord":
        return cls(filename=filename, filepath=filepath, created_at=utc_timestamp())


class FileEntry(BaseModel):
    """
    A registry entry as reported by listing.

    Attributes:
        file_id: Opaque identifier
        record: Stored metadata
        size: Current size on disk in bytes, 0 when the file is gone
    """
    file_id: str
    record: FileRecord
    size: int = 0


def new_file_id() -> str:
    """Return a new opaque file identifier."""
    return str(uuid.uuid4())


class FileRegistry:
    """
    In-memory index of generated and uploaded files.

    The registry lives as long as the process. Entries whose backing file
    has disappeared are purged lazily, when a download or delete looks
    them up; listing only reports them with size 0.
    """

    def __init__(self):
        self._records: Dict[str, FileRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._records

    def put(self, file_id: str, record: FileRecord) -> None:
        """Insert or overwrite an entry."""
        self._records[file_id] = record
        logger.info("Registered file", extra={"file_id": file_id, "file_name": record.filename})

    def get(self, file_id: str) -> Optional[FileRecord]:
        """Return the entry without checking the disk."""
        return self._records.get(file_id)

    def list(self) -> List[FileEntry]:
        """
        List every entry with its current size on disk.

        Returns:
            List[FileEntry]: Entries in insertion order
        """
        entries = []
        for file_id, record in list(self._records.items()):
            try:
                size = os.path.getsize(record.filepath)
            except FileNotFoundError:
                size = 0
            entries.append(FileEntry(file_id=file_id, record=record, size=size))
        return entries

    def lookup_for_download(self, file_id: str) -> Result[FileRecord]:
        """
        Look up an entry whose file must still exist on disk.

        A missing file purges the entry.

        Args:
            file_id: Identifier to look up

        Returns:
            Result[FileRecord]: The record, or a 404 failure
        """
        record = self._records.get(file_id)
        if record is None:
            logger.warning("Unknown file id", extra={"file_id": file_id})
            return Result.not_found("The requested file does not exist or has expired")

        if not os.path.exists(record.filepath):
            del self._records[file_id]
            logger.warning(
                "Purged registry entry for missing file",
                extra={"file_id": file_id, "file_path": record.filepath}
            )
            return Result.not_found("The file has been removed from the server")

        return Result.ok(record)

    def delete(self, file_id: str) -> Result[FileRecord]:
        """
        Remove the file from disk (if present) and drop the entry.

        Args:
            file_id: Identifier to delete

        Returns:
            Result[FileRecord]: The removed record, or a 404 failure for unknown ids

        Raises:
            OSError: If the file exists but cannot be removed; the entry is kept
        """
        record = self._records.get(file_id)
        if record is None:
            logger.warning("Delete requested for unknown file id", extra={"file_id": file_id})
            return Result.not_found("The requested file does not exist")

        try:
            os.remove(record.filepath)
        except FileNotFoundError:
            logger.info("File already gone from disk", extra={"file_id": file_id, "file_path": record.filepath})

        del self._records[file_id]
        logger.info("Deleted file", extra={"file_id": file_id, "file_path": record.filepath})
        return Result.ok(record)

    def clear(self) -> None:
        """Drop every entry; files on disk are left alone."""
        self._records.clear()
