# SPDX-License-Identifier: AGPL-3.0-only

"""
File storage for uploaded documents.

The pipeline only needs ``read(path) -> bytes``; this local implementation
also writes uploads under ``<root>/<document_type>/<uuid>_<name>``.
"""

import logging
import os
import uuid
from typing import Optional

from werkzeug.utils import secure_filename

from docextract.exceptions import InfrastructureError

logger = logging.getLogger(__name__)


class LocalFileStorage:
    """Stores uploads on the local filesystem below a root folder."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def save(self, data: bytes, filename: Optional[str], document_type: str) -> str:
        """Write the upload and return its path relative to the root."""
        base_name = secure_filename(filename or "") or "upload"
        rel_path = os.path.join(secure_filename(document_type) or "misc", f"{uuid.uuid4()}_{base_name}")
        full_path = self._resolve(rel_path)
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "wb") as f:
                f.write(data)
        except OSError as e:
            raise InfrastructureError(f"Could not store upload: {e}")
        logger.info("Stored upload %s (%d bytes)", rel_path, len(data))
        return rel_path

    def read(self, path: str) -> bytes:
        try:
            with open(self._resolve(path), "rb") as f:
                return f.read()
        except OSError as e:
            raise InfrastructureError(f"Could not read stored file {path}: {e}")

    def delete(self, path: str) -> bool:
        try:
            os.remove(self._resolve(path))
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise InfrastructureError(f"Could not delete stored file {path}: {e}")

    def _resolve(self, path: str) -> str:
        full_path = os.path.abspath(os.path.join(self.root, path))
        if os.path.commonpath([full_path, self.root]) != self.root:
            raise InfrastructureError(f"Path escapes storage root: {path}")
        return full_path
