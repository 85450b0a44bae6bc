from __future__ import annotations

import logging
import os
from typing import Callable
from uuid import uuid4

from exto.core.config import get_settings
from exto.core.errors import FilePathExhaustedError


logger = logging.getLogger(__name__)


def _random_id() -> str:
    return uuid4().hex


class UniquePathAllocator:
    """Allocate collision-free upload paths of the form ``<dir>/<org>/<id>_<name>``.

    Retries a fixed number of times per id length, then escalates the id length
    until the configured maximum. The existence check and the later file write
    are not atomic across processes.
    """

    def __init__(
        self,
        *,
        id_length: int | None = None,
        max_id_length: int | None = None,
        attempts_per_length: int | None = None,
        id_source: Callable[[], str] | None = None,
        exists: Callable[[str], bool] | None = None,
    ) -> None:
        settings = get_settings()
        self._id_length = id_length or settings.path_id_length
        self._max_id_length = max_id_length or settings.path_id_max_length
        self._attempts = attempts_per_length or settings.path_attempts_per_length
        # Injectable for deterministic collision tests.
        self._id_source = id_source or _random_id
        self._exists = exists or os.path.exists

    def candidate(self, directory: str, org_id: str, filename: str, id_length: int) -> str:
        unique_id = self._id_source()[:id_length]
        # Client-supplied names never escape the organization directory.
        name = os.path.basename(filename).lower()
        return os.path.join(directory, org_id, f"{unique_id}_{name}")

    def allocate(self, directory: str, org_id: str, filename: str) -> str:
        for id_length in range(self._id_length, self._max_id_length + 1):
            for _ in range(self._attempts):
                path = self.candidate(directory, org_id, filename, id_length)
                if self._exists(path):
                    continue
                os.makedirs(os.path.join(directory, org_id), exist_ok=True)
                return path
            logger.info(
                "upload path collisions exhausted id_length=%s org_id=%s; escalating",
                id_length,
                org_id,
            )
        raise FilePathExhaustedError(f"No unique path available for {filename!r}")
