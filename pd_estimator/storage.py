"""
Reading history persisted as a JSON file, newest first.
"""

import json
import os
import traceback
from typing import List

from .session import SavedReading


HISTORY_LIMIT = 25


class ReadingHistory:
    """
    Saved readings on disk.
    
    Storage failures never raise: a missing or corrupt file reads as an
    empty history, and a failed write keeps the previous list.
    """
    
    def __init__(self, path: str, limit: int = HISTORY_LIMIT):
        self.path = path
        self.limit = limit
    
    def load(self) -> List[SavedReading]:
        if not os.path.exists(self.path):
            return []
        
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, list):
                return []
            return [SavedReading.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            print(f"[ReadingHistory] Could not read {self.path}: {e}")
            return []
    
    def save(self, reading: SavedReading) -> List[SavedReading]:
        """
        Prepend a reading and trim to the history limit.
        
        Returns:
            The history after saving (unchanged on write failure)
        """
        current = self.load()
        updated = [reading] + current
        updated = updated[:self.limit]
        
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump([r.to_dict() for r in updated], f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            print(f"[ReadingHistory] Could not write {self.path}: {e}")
            traceback.print_exc()
            return current
        
        return updated
    
    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            print(f"[ReadingHistory] Could not clear {self.path}: {e}")
