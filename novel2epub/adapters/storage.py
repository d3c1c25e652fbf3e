from __future__ import annotations

import logging
import shutil
from pathlib import Path

from novel2epub.core.errors import UploadError

logger = logging.getLogger(__name__)


class LocalBlobStorage:
    """Copy artifacts into a served directory and hand out URLs under ``public_base_url``."""

    def __init__(self, root_dir: str, public_base_url: str):
        self._root = Path(root_dir)
        self._public_base_url = public_base_url.rstrip("/")

    def upload(self, local_path: str, file_name: str, content_type: str) -> str:
        target = self._root / file_name
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_path, target)
        except OSError as exc:
            raise UploadError(f"Could not store {file_name}: {exc}") from exc
        logger.info("Stored %s (%s)", file_name, content_type)
        return f"{self._public_base_url}/{file_name}"

    def delete(self, file_name: str) -> None:
        (self._root / file_name).unlink(missing_ok=True)
