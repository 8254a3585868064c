from fastapi import FastAPI, status, Body, Depends, File, Request, UploadFile
import os
import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat_export_process import (
    DeleteResponse,
    ErrorResponse,
    ExportProcessor,
    FileListResponse,
    GeneratedFileResponse,
    HealthResponse,
    UploadResponse,
    iter_file,
)
from excel_writer import XLSX_MIME_TYPE, SpreadsheetWriter
from file_registry import FileRegistry
from utils.clock import utc_timestamp

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Runtime configuration, overridable through the environment
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
UPLOADS_DIR = os.getenv("UPLOADS_DIR", os.path.join(BASE_DIR, "uploads"))
MAX_BODY_BYTES = int(os.getenv("MAX_BODY_BYTES", str(50 * 1024 * 1024)))
API_VERSION = "1.0.0"

# Create logs and uploads directories if they don't exist
log_dir = os.getenv("LOG_DIR", os.path.join(BASE_DIR, "logs"))
os.makedirs(log_dir, exist_ok=True)
os.makedirs(UPLOADS_DIR, exist_ok=True)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Add file handler to write logs to file
log_file_path = os.path.join(log_dir, f"app_{datetime.now().strftime('%Y%m%d')}.log")
file_handler = logging.FileHandler(log_file_path)
file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
logging.getLogger().addHandler(file_handler)

START_TIME = time.monotonic()

EXAMPLE_PAYLOADS = {
    "Conversation format": {
        "conversations": [
            {
                "timestamp": "2024-01-01T12:00:00Z",
                "role": "user",
                "content": "Hello, how are you?",
                "tokens": 5
            },
            {
                "timestamp": "2024-01-01T12:00:05Z",
                "role": "assistant",
                "content": "I am doing well, thank you!",
                "tokens": 8
            }
        ]
    },
    "Data array format": {
        "data": [
            {"name": "John", "age": 30, "city": "New York"},
            {"name": "Jane", "age": 25, "city": "Los Angeles"}
        ]
    },
    "Generic object format": {
        "title": "My ChatGPT Session",
        "user": "john_doe",
        "session_id": "abc123",
        "messages": ["Hello", "How are you?"],
        "metadata": {"tokens_used": 50, "duration": "5 minutes"}
    }
}

ENDPOINTS = {
    "POST /api/process-chatgpt": "Process ChatGPT payload and generate Excel file",
    "POST /api/upload-xlsx": "Upload a .xlsx file",
    "GET /api/download/{fileId}": "Download generated Excel file",
    "GET /api/files": "List all generated files",
    "DELETE /api/files/{fileId}": "Delete a generated file",
    "GET /api/health": "Health check"
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"ChatGPT Excel API started, upload directory: {app.state.uploads_dir}")
    yield
    app.state.registry.clear()
    logger.info("ChatGPT Excel API stopped, file registry cleared")


# Initialize FastAPI app with metadata
app = FastAPI(
    title="ChatGPT Excel API",
    description="Convert ChatGPT style JSON payloads into Excel files and manage the generated files",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# The registry and storage location are owned by the application instance
app.state.registry = FileRegistry()
app.state.uploads_dir = UPLOADS_DIR


def get_registry(request: Request) -> FileRegistry:
    return request.app.state.registry


def get_writer(request: Request) -> SpreadsheetWriter:
    return SpreadsheetWriter(request.app.state.uploads_dir)


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    """Reject request bodies whose declared length exceeds MAX_BODY_BYTES."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_BODY_BYTES:
        logger.warning("Rejected oversized request", extra={"content_length": content_length, "path": request.url.path})
        return error_response(
            413,
            "Payload too large",
            f"Request body exceeds the {MAX_BODY_BYTES}-byte limit"
        )
    return await call_next(request)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Invalid request", extra={"path": request.url.path, "errors": str(exc.errors())})
    return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request", "Request body must be valid JSON")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, "Request failed", str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        "An unexpected error occurred"
    )


ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


# API Endpoints
@app.post(
    "/api/process-chatgpt",
    response_model=GeneratedFileResponse,
    responses=ERROR_RESPONSES,
    tags=["Excel Generation"]
)
async def process_chatgpt(
    payload: Any = Body(...),
    registry: FileRegistry = Depends(get_registry),
    writer: SpreadsheetWriter = Depends(get_writer)
):
    """
    Convert a ChatGPT style payload into an Excel file.

    Accepts a conversation payload (``conversations`` list), a record list
    (``data`` list) or any other JSON object, which is flattened into
    property/value rows.

    Returns:
        GeneratedFileResponse: File id, file name and download URL
    """
    result = await ExportProcessor.process_payload(payload, registry, writer)
    if result.is_failure():
        return result.to_error_response()
    return result.data


@app.post(
    "/api/upload-xlsx",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    tags=["Files"]
)
async def upload_xlsx(
    request: Request,
    file: Optional[UploadFile] = File(None),
    registry: FileRegistry = Depends(get_registry)
):
    """
    Store an uploaded .xlsx workbook and register it for download.

    Returns:
        UploadResponse: File id, stored file name and download URL
    """
    if file is None:
        result = ExportProcessor.validate_upload(None, None)
    else:
        result = await ExportProcessor.store_upload(
            file.filename, file.content_type, file.file, registry, request.app.state.uploads_dir
        )

    if result.is_failure():
        return result.to_error_response()
    return result.data


@app.get(
    "/api/download/{file_id}",
    response_class=StreamingResponse,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["Files"]
)
async def download_file(
    file_id: str,
    attachment: Optional[str] = None,
    registry: FileRegistry = Depends(get_registry)
):
    """
    Stream a stored workbook.

    ``?attachment=true`` sets an attachment Content-Disposition; anything
    else serves the file inline.
    """
    result = await ExportProcessor.open_for_download(registry, file_id)
    if result.is_failure():
        return result.to_error_response()

    record, handle = result.data
    disposition = "attachment" if attachment == "true" else "inline"
    return StreamingResponse(
        iter_file(handle),
        media_type=XLSX_MIME_TYPE,
        headers={"Content-Disposition": f'{disposition}; filename="{record.filename}"'}
    )


@app.get(
    "/api/files",
    response_model=FileListResponse,
    responses={500: {"model": ErrorResponse}},
    tags=["Files"]
)
async def list_files(registry: FileRegistry = Depends(get_registry)):
    """List registered files with their current size on disk."""
    result = await ExportProcessor.list_files(registry)
    if result.is_failure():
        return result.to_error_response()
    return result.data


@app.delete(
    "/api/files/{file_id}",
    response_model=DeleteResponse,
    responses=ERROR_RESPONSES,
    tags=["Files"]
)
async def delete_file(file_id: str, registry: FileRegistry = Depends(get_registry)):
    """Delete a stored file and its registry entry."""
    result = await ExportProcessor.delete_file(registry, file_id)
    if result.is_failure():
        return result.to_error_response()
    return result.data


@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
async def health():
    """Liveness probe."""
    return HealthResponse(
        timestamp=utc_timestamp(),
        uptime=time.monotonic() - START_TIME,
        version=API_VERSION
    )


@app.get("/", tags=["Health"])
async def index():
    """Describe the available endpoints and the accepted payload formats."""
    return {
        "message": "ChatGPT Excel API",
        "version": API_VERSION,
        "endpoints": ENDPOINTS,
        "documentation": {
            "ChatGPT payload format examples": EXAMPLE_PAYLOADS
        }
    }


# Run the application if executed directly
if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting ChatGPT Excel API on port {PORT}.")
    uvicorn.run("main:app", host=HOST, port=PORT, reload=True)
