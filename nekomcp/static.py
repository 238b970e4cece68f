"""Static file lookup for the pre-built widget bundle."""

from __future__ import annotations

from pathlib import Path

from fastapi.responses import FileResponse


MIME_TYPES = {
    ".html": "text/html; charset=utf-8",
    ".js": "application/javascript; charset=utf-8",
    ".css": "text/css; charset=utf-8",
    ".map": "application/json; charset=utf-8",
}


class PublicDirectory:
    """Serves files from one directory, refusing paths that escape it."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def resolve(self, request_path: str) -> Path | None:
        relative = request_path.lstrip("/")
        if not relative:
            return None
        try:
            candidate = (self.root / relative).resolve()
            if not candidate.is_relative_to(self.root) or not candidate.is_file():
                return None
        except (OSError, ValueError):
            # NUL bytes and over-long names cannot name a servable file
            return None
        return candidate

    @staticmethod
    def content_type(path: Path) -> str:
        return MIME_TYPES.get(path.suffix, "application/octet-stream")

    def response(self, request_path: str, headers: dict[str, str] | None = None) -> FileResponse | None:
        path = self.resolve(request_path)
        if path is None:
            return None
        return FileResponse(path, media_type=self.content_type(path), headers=headers)
