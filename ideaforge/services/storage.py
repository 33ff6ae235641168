import aiofiles
from pathlib import Path

from ideaforge.config import settings


class BlobStore:
    def __init__(self, outputs_dir: Path | None = None, public_base_url: str | None = None):
        self.outputs_dir = outputs_dir or settings.outputs_dir
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")

    def get_session_dir(self, session_id: str) -> Path:
        session_dir = self.outputs_dir / session_id
        session_dir.mkdir(parents=True, exist_ok=True)
        return session_dir

    async def save_bytes(self, session_id: str, filename: str, data: bytes) -> str:
        """Write a blob under the session directory and return its public URL."""
        file_path = self.get_session_dir(session_id) / filename

        async with aiofiles.open(file_path, "wb") as f:
            await f.write(data)

        return f"{self.public_base_url}/{session_id}/{filename}"

    def get_visual_filename(self, visual_id: str) -> str:
        return f"visual_{visual_id}.png"
