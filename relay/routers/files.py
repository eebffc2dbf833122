import re
from pathlib import Path

from fastapi import APIRouter, Depends, status
from fastapi.responses import FileResponse, JSONResponse
from starlette.background import BackgroundTask

from relay.logging_config import get_logger
from relay.runtime import Runtime, get_runtime

logger = get_logger("files")

router = APIRouter()

FILE_ID_PATTERN = re.compile(r"^[a-f0-9]{15,18}$", re.IGNORECASE)


def _delete_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.error(f"Failed to delete temp file: {path}: {e}")


@router.get("/files/{file_id}")
async def serve_file(file_id: str, runtime: Runtime = Depends(get_runtime)):
    """Serve a temporary audio file once, then delete it."""
    if not FILE_ID_PATTERN.match(file_id):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": "Invalid file ID"})

    path = Path(runtime.settings.temp_path) / f"{file_id}.mp3"
    if not path.is_file() or path.stat().st_size == 0:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"message": "File not found or deleted"})

    return FileResponse(path, media_type="audio/mpeg", background=BackgroundTask(_delete_file, path))
