import os
import shutil
import logging
import time
import uuid
from http import HTTPStatus
from typing import Any, BinaryIO, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from excel_writer import XLSX_MIME_TYPE, SpreadsheetWriter
from file_registry import FileRecord, FileRegistry, new_file_id
from payload_normalizer import normalize_payload
from utils.result import Result

# Configure logger with more structured format
logger = logging.getLogger(__name__)

UPLOAD_FILENAME_PREFIX = "uploaded_"
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class LogContext:
    """Context manager for tracking and logging operation metrics"""
    def __init__(self, operation_name: str, **kwargs):
        self.operation_name = operation_name
        self.start_time = None
        self.request_id = kwargs.get('request_id', str(uuid.uuid4())[:8])
        self.extra = kwargs

    def __enter__(self):
        self.start_time = time.time()
        logger.info(f"Starting {self.operation_name}", extra={"request_id": self.request_id, **self.extra})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        if (exc_type):
            logger.error(
                f"Failed {self.operation_name} in {duration:.2f}s: {str(exc_val)}",
                extra={"request_id": self.request_id, "duration": duration, **self.extra},
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            logger.info(
                f"Completed {self.operation_name} in {duration:.2f}s",
                extra={"request_id": self.request_id, "duration": duration, **self.extra}
            )


def download_url(file_id: str) -> str:
    return f"/api/download/{file_id}"


# Response models; JSON field names are camelCase
class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GeneratedFileResponse(ApiModel):
    """
    Response for a generated spreadsheet.

    Attributes:
        success: Always True
        message: Human readable status
        file_id: Registry identifier of the new file
        filename: Generated file name
        download_url: Relative URL serving the file
        row_count: Number of data rows written
    """
    success: bool = True
    message: str = "Excel file generated successfully"
    file_id: str = Field(alias="fileId")
    filename: str
    download_url: str = Field(alias="downloadUrl")
    row_count: int = Field(default=0, alias="rowCount")


class UploadResponse(ApiModel):
    """
    Response for an accepted upload.

    Attributes:
        success: Always True
        message: Human readable status
        file_id: Registry identifier of the stored file
        filename: Stored file name
        download_url: Relative URL serving the file
    """
    success: bool = True
    message: str = "File uploaded successfully"
    file_id: str = Field(alias="fileId")
    filename: str
    download_url: str = Field(alias="downloadUrl")


class FileListItem(ApiModel):
    file_id: str = Field(alias="fileId")
    filename: str
    created_at: str = Field(alias="createdAt")
    download_url: str = Field(alias="downloadUrl")
    size: int


class FileListResponse(ApiModel):
    success: bool = True
    files: List[FileListItem] = []
    count: int = 0


class DeleteResponse(ApiModel):
    success: bool = True
    message: str = "File deleted successfully"


class HealthResponse(ApiModel):
    status: str = "OK"
    timestamp: str
    uptime: float
    version: str


class ErrorResponse(ApiModel):
    """Error envelope returned by every failing endpoint."""
    error: str
    message: str


def _copy_to_disk(source: BinaryIO, filepath: str) -> None:
    os.makedirs(os.path.dirname(filepath), exist_ok=True)
    with open(filepath, "wb") as target:
        shutil.copyfileobj(source, target)


def iter_file(handle: BinaryIO) -> Iterator[bytes]:
    """Yield an open file in chunks and close it when exhausted."""
    try:
        while True:
            chunk = handle.read(DOWNLOAD_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        handle.close()


class ExportProcessor:
    """
    Orchestrates payload export and stored file operations.

    Every method returns a Result; failures carry the HTTP status and the
    client-facing message, and unexpected exceptions are logged here and
    turned into generic server errors. Blocking disk work runs in the
    threadpool while registry changes stay on the event loop.
    """

    @staticmethod
    async def process_payload(
        payload: Any,
        registry: FileRegistry,
        writer: SpreadsheetWriter
    ) -> Result[GeneratedFileResponse]:
        """
        Normalize a payload, write it to a workbook and register the file.

        Args:
            payload: Decoded JSON body
            registry: Registry receiving the new entry
            writer: Spreadsheet writer bound to the uploads directory

        Returns:
            Result[GeneratedFileResponse]: Download details, or a 500 failure
        """
        request_id = str(uuid.uuid4())[:8]
        log_context = {"request_id": request_id, "output_dir": writer.output_dir}
        logger.info("Processing ChatGPT payload", extra=log_context)

        try:
            with LogContext("payload normalization", **log_context):
                table = normalize_payload(payload)
            log_context["row_count"] = table.row_count

            with LogContext("workbook generation", **log_context):
                filename, filepath = await run_in_threadpool(writer.write, table)
        except Exception as e:
            logger.exception("Failed to generate Excel file", extra={**log_context, "error": str(e)})
            return Result.server_error("Failed to process ChatGPT payload")

        file_id = new_file_id()
        registry.put(file_id, FileRecord.create(filename, filepath))
        logger.info(f"Generated Excel file with {table.row_count} rows", extra={**log_context, "file_id": file_id})

        return Result.ok(GeneratedFileResponse(
            file_id=file_id,
            filename=filename,
            download_url=download_url(file_id),
            row_count=table.row_count
        ))

    @staticmethod
    def validate_upload(filename: Optional[str], content_type: Optional[str]) -> Result[bool]:
        """
        Check that an upload is present and declared as an .xlsx workbook.

        Args:
            filename: Client supplied file name, None when no file was sent
            content_type: Declared MIME type of the part

        Returns:
            Result[bool]: True, or a 400 failure
        """
        if not filename:
            logger.warning("Upload request without a file")
            return Result.invalid_input("No file uploaded", "Please upload a .xlsx file")

        if content_type != XLSX_MIME_TYPE:
            logger.warning("Rejected upload with wrong type", extra={"content_type": content_type, "upload_name": filename})
            return Result.invalid_input("Invalid file type", "Only .xlsx files are allowed!")

        return Result.ok(True)

    @staticmethod
    async def store_upload(
        filename: Optional[str],
        content_type: Optional[str],
        stream: BinaryIO,
        registry: FileRegistry,
        uploads_dir: str
    ) -> Result[UploadResponse]:
        """
        Validate an uploaded workbook, copy it into storage and register it.

        Nothing is written to disk when validation fails.

        Args:
            filename: Client supplied file name
            content_type: Declared MIME type
            stream: Readable binary stream of the upload
            registry: Registry receiving the new entry
            uploads_dir: Storage directory

        Returns:
            Result[UploadResponse]: 201 with download details, 400 or 500 failure
        """
        validation_result = ExportProcessor.validate_upload(filename, content_type)
        if validation_result.is_failure():
            return validation_result

        stored_name = f"{UPLOAD_FILENAME_PREFIX}{uuid.uuid4()}.xlsx"
        filepath = os.path.join(uploads_dir, stored_name)
        log_context = {"upload_name": filename, "file_path": filepath}

        try:
            with LogContext("upload storage", **log_context):
                await run_in_threadpool(_copy_to_disk, stream, filepath)
        except Exception as e:
            logger.exception("Failed to store upload", extra={**log_context, "error": str(e)})
            return Result.server_error("Failed to upload file")

        file_id = new_file_id()
        registry.put(file_id, FileRecord.create(stored_name, filepath))

        return Result.ok(
            UploadResponse(file_id=file_id, filename=stored_name, download_url=download_url(file_id)),
            status_code=HTTPStatus.CREATED
        )

    @staticmethod
    async def open_for_download(registry: FileRegistry, file_id: str) -> Result[Tuple[FileRecord, BinaryIO]]:
        """
        Resolve a file id to its record and an open handle.

        The handle is opened before any response header is sent, so a file
        vanishing between lookup and open still produces an error envelope.

        Args:
            registry: Registry to look the id up in
            file_id: Identifier from the URL

        Returns:
            Result[Tuple[FileRecord, BinaryIO]]: Record and open file, or a 404/500 failure
        """
        lookup_result = registry.lookup_for_download(file_id)
        if lookup_result.is_failure():
            return lookup_result

        record = lookup_result.data
        try:
            handle = await run_in_threadpool(open, record.filepath, "rb")
        except OSError as e:
            logger.exception("Error opening file for streaming", extra={"file_id": file_id, "error": str(e)})
            return Result.fail(
                "File streaming error",
                message="Failed to download the file",
                status_code=HTTPStatus.INTERNAL_SERVER_ERROR
            )

        logger.info("Streaming file", extra={"file_id": file_id, "file_path": record.filepath})
        return Result.ok((record, handle))

    @staticmethod
    async def list_files(registry: FileRegistry) -> Result[FileListResponse]:
        """
        List registered files with their live sizes.

        Args:
            registry: Registry to list

        Returns:
            Result[FileListResponse]: Files and count, or a 500 failure
        """
        try:
            entries = await run_in_threadpool(registry.list)
        except Exception as e:
            logger.exception("Error listing files", extra={"error": str(e)})
            return Result.server_error("Failed to list files")

        files = [
            FileListItem(
                file_id=entry.file_id,
                filename=entry.record.filename,
                created_at=entry.record.created_at,
                download_url=download_url(entry.file_id),
                size=entry.size
            )
            for entry in entries
        ]
        return Result.ok(FileListResponse(files=files, count=len(files)))

    @staticmethod
    async def delete_file(registry: FileRegistry, file_id: str) -> Result[DeleteResponse]:
        """
        Delete a registered file and its entry.

        Args:
            registry: Registry holding the entry
            file_id: Identifier from the URL

        Returns:
            Result[DeleteResponse]: Success envelope, 404 for unknown ids, 500 on disk failure
        """
        try:
            delete_result = await run_in_threadpool(registry.delete, file_id)
        except OSError as e:
            logger.exception("Error deleting file", extra={"file_id": file_id, "error": str(e)})
            return Result.server_error("Failed to delete file")

        return delete_result.and_then(lambda _: Result.ok(DeleteResponse()))
