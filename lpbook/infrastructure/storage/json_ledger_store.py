from __future__ import annotations

import json
import logging
import os
import tempfile

from lpbook.domain.entities.portfolio import PortfolioState
from lpbook.domain.exceptions import PersistenceFailureError
from lpbook.infrastructure.storage.ledger_mapper import map_dict_to_state, map_state_to_dict


logger = logging.getLogger(__name__)


class JsonLedgerStore:
    """Ledger persisted as one JSON document, replaced atomically on every save."""

    def __init__(self, path: str):
        self._path = os.path.abspath(path)

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> PortfolioState | None:
        if not os.path.exists(self._path):
            logger.info("json_ledger_store: not_found path=%s", self._path)
            return None
        try:
            with open(self._path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
            return map_dict_to_state(payload)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise PersistenceFailureError(f"Could not read ledger {self._path}: {exc}") from exc

    def save(self, state: PortfolioState) -> None:
        try:
            _atomic_write_json(self._path, map_state_to_dict(state))
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceFailureError(f"Could not write ledger {self._path}: {exc}") from exc
        logger.debug(
            "json_ledger_store: saved path=%s positions=%s",
            self._path,
            len(state.positions),
        )


def _atomic_write_json(path: str, data: dict) -> None:
    """Write to a temp file in the target directory, fsync, then rename over the target."""
    dir_name = os.path.dirname(path)
    os.makedirs(dir_name, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=dir_name, prefix=".ledger-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
