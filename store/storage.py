"""
Persistent storage for the in-memory document store.
Saves and loads the full document set as JSON with atomic replacement.
"""

import os
import threading
from datetime import datetime
from typing import Any, Dict

from common.logger import get_logger
from common.utils import timestamp, load_json_file, save_json_file

logger = get_logger(__name__)

_DATETIME_KEY = '__datetime__'


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_KEY: value.isoformat()}
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value.keys()) == {_DATETIME_KEY}:
            return datetime.fromisoformat(value[_DATETIME_KEY])
        return {key: _decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode(item) for item in value]
    return value


class SnapshotStorage:
    """
    Manages the on-disk snapshot of an in-memory document store.
    
    Layout:
        {"saved_at": <epoch>, "sequence": <int>,
         "collections": {name: {doc_id: {"version": <int>, "data": {...}}}}}
    """
    
    def __init__(self, file_path: str):
        self.file_path = file_path
        self.lock = threading.RLock()
        
        directory = os.path.dirname(file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
    
    def save(self, collections: Dict[str, Dict[str, Dict]], sequence: int):
        """
        Save every collection. Written to a temporary file first and then
        renamed over the previous snapshot.
        """
        with self.lock:
            try:
                save_json_file({
                    'saved_at': timestamp(),
                    'sequence': sequence,
                    'collections': _encode(collections)
                }, self.file_path)
                
                logger.debug(f"Saved store snapshot: sequence={sequence}")
                
            except OSError as e:
                logger.error(f"Failed to save store snapshot: {e}")
                raise
    
    def load(self) -> Dict:
        """
        Load the snapshot from disk.
        Returns dict with 'sequence' and 'collections'; empty when no snapshot exists.
        """
        with self.lock:
            data = load_json_file(self.file_path)
            if not data:
                return {'sequence': 0, 'collections': {}}
            
            collections = _decode(data.get('collections', {}))
            logger.info(f"Loaded store snapshot: {sum(len(docs) for docs in collections.values())} documents, "
                        f"sequence={data.get('sequence', 0)}")
            
            return {
                'sequence': data.get('sequence', 0),
                'collections': collections
            }
    
    def clear(self):
        """Remove the snapshot file"""
        with self.lock:
            if os.path.exists(self.file_path):
                os.remove(self.file_path)
                logger.info(f"Removed store snapshot {self.file_path}")
