from typing import Dict, Any, Optional
from pathlib import Path
import copy
import json
import os
import structlog

from roundtable.domain.ports import MemoryPersistence

logger = structlog.get_logger(__name__)


class InMemoryPersistence(MemoryPersistence):
    """Keeps the saved blob in process; used in tests and when no storage dir is set"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.data = copy.deepcopy(initial) if initial is not None else None
        self.save_count = 0

    def load(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self.data)

    def save(self, data: Dict[str, Any]) -> None:
        self.data = copy.deepcopy(data)
        self.save_count += 1


class JsonFilePersistence(MemoryPersistence):
    """Saves the blob as a JSON file, replacing it atomically"""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error("Corrupt state file, ignoring", path=str(self.path), error=str(e))
            return None

    def save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)
