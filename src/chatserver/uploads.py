"""File upload endpoint for message attachments.

Clients upload a file over HTTP, then reference the returned descriptor in
the ``attachment`` field of ``send_message``. Stored files are served back
under ``/uploads/<filename>``.
"""

import logging
import uuid
from collections.abc import Callable
from pathlib import Path

from aiohttp import BodyPartReader, hdrs, web

from chatserver.config import UploadConfig
from chatserver.metrics import get_metrics_collector
from chatserver.models import ServerSettings

logger = logging.getLogger(__name__)

UPLOAD_FIELD = "file"
CHUNK_SIZE = 64 * 1024


class UploadRejected(Exception):
    """Raised when an upload cannot be accepted."""

    def __init__(self, status: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class UploadHandler:
    """Streams multipart uploads to the upload directory.

    Both the file extension and the declared content type must be
    allow-listed, and the body may not exceed the configured size.
    """

    def __init__(
        self,
        config: UploadConfig,
        settings_provider: Callable[[], ServerSettings] | None = None,
    ) -> None:
        """Initialize upload handler.

        Args:
            config: Upload configuration
            settings_provider: Returns the live server settings (optional)
        """
        self.config = config
        self.settings_provider = settings_provider
        self.directory = Path(config.directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    async def handle_upload(self, request: web.Request) -> web.Response:
        """POST /upload.

        Returns:
            200 OK: {filename, originalname, size, mimetype, url}
            400 Bad Request: NO_FILE or INVALID_FILE_TYPE
            403 Forbidden: ATTACHMENTS_DISABLED
            413 Payload Too Large: FILE_TOO_LARGE
        """
        try:
            descriptor = await self._store(request)
        except UploadRejected as e:
            get_metrics_collector().record_upload(accepted=False, reason=e.code)
            logger.info("Upload rejected", extra={"code": e.code, "reason": str(e)})
            return web.json_response({"error": str(e), "code": e.code}, status=e.status)

        get_metrics_collector().record_upload(accepted=True)
        logger.info(
            "Upload stored",
            extra={"filename": descriptor["filename"], "size": descriptor["size"]},
        )
        return web.json_response(descriptor)

    async def _store(self, request: web.Request) -> dict[str, str | int]:
        if self.settings_provider is not None and not self.settings_provider().allow_attachments:
            raise UploadRejected(403, "ATTACHMENTS_DISABLED", "Attachments are disabled")

        if request.content_type != "multipart/form-data":
            raise UploadRejected(400, "NO_FILE", "No file uploaded")

        part = await self._find_file_part(request)
        original_name = part.filename or ""
        extension = Path(original_name).suffix.lower()
        mimetype = part.headers.get(hdrs.CONTENT_TYPE, "").split(";")[0].strip().lower()

        if (
            extension not in self.config.allowed_extensions
            or mimetype not in self.config.allowed_mimetypes
        ):
            raise UploadRejected(400, "INVALID_FILE_TYPE", "Invalid file type")

        filename = f"{uuid.uuid4().hex}{extension}"
        target = self.directory / filename
        size = 0

        try:
            with open(target, "wb") as f:
                while chunk := await part.read_chunk(CHUNK_SIZE):
                    size += len(chunk)
                    if size > self.config.max_size_bytes:
                        raise UploadRejected(413, "FILE_TOO_LARGE", "File too large")
                    f.write(chunk)
        except UploadRejected:
            target.unlink(missing_ok=True)
            raise

        return {
            "filename": filename,
            "originalname": original_name,
            "size": size,
            "mimetype": mimetype,
            "url": f"/uploads/{filename}",
        }

    @staticmethod
    async def _find_file_part(request: web.Request) -> BodyPartReader:
        reader = await request.multipart()

        part = await reader.next()
        while part is not None:
            if isinstance(part, BodyPartReader) and part.name == UPLOAD_FIELD and part.filename:
                return part
            part = await reader.next()

        raise UploadRejected(400, "NO_FILE", "No file uploaded")


def setup_upload_routes(
    app: web.Application,
    config: UploadConfig,
    settings_provider: Callable[[], ServerSettings] | None = None,
) -> None:
    """Set up upload routes on application.

    Args:
        app: aiohttp Application instance
        config: Upload configuration
        settings_provider: Returns the live server settings (optional)
    """
    handler = UploadHandler(config, settings_provider)

    app.router.add_post("/upload", handler.handle_upload)
    app.router.add_static("/uploads", handler.directory)

    logger.info(
        "Upload endpoints configured: /upload, /uploads",
        extra={"directory": str(handler.directory)},
    )
