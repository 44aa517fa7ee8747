"""
Store-neutral document model.
References, snapshots, change notifications and the field-update sentinels
applied atomically as part of a write.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class DocumentRef:
    """Reference to a document by collection and id"""
    collection: str
    id: str
    
    @property
    def path(self) -> str:
        return f"{self.collection}/{self.id}"


@dataclass
class DocumentSnapshot:
    """Materialized state of a document at read time"""
    ref: DocumentRef
    exists: bool
    data: Dict[str, Any] = field(default_factory=dict)
    
    @property
    def id(self) -> str:
        return self.ref.id
    
    def get(self, field_name: str, default: Any = None) -> Any:
        return self.data.get(field_name, default)
    
    def to_dict(self) -> Optional[Dict[str, Any]]:
        """Copy of the document data, or None when the document is missing"""
        if not self.exists:
            return None
        return copy.deepcopy(self.data)


@dataclass
class DocumentChange:
    """A change observed on a watched collection"""
    type: str
    document: DocumentSnapshot


@dataclass(frozen=True)
class ArrayUnion:
    """Add each value to an array field unless already present"""
    values: Tuple[Any, ...]
    
    def __init__(self, values):
        object.__setattr__(self, 'values', tuple(values))


@dataclass(frozen=True)
class ArrayRemove:
    """Remove every instance of each value from an array field"""
    values: Tuple[Any, ...]
    
    def __init__(self, values):
        object.__setattr__(self, 'values', tuple(values))


class _ServerTimestamp:
    """Replaced by the commit time of the write it is part of"""
    
    def __repr__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def apply_field_updates(current: Dict[str, Any], fields: Dict[str, Any],
                        now: datetime) -> Dict[str, Any]:
    """
    Apply top-level field updates to a copy of a document.
    
    Args:
        current: Existing document data (not modified)
        fields: Field values or sentinels
        now: Value substituted for SERVER_TIMESTAMP
    
    Returns:
        The updated document data
    """
    updated = copy.deepcopy(current)
    
    for name, value in fields.items():
        if isinstance(value, ArrayUnion):
            existing = updated.get(name)
            array = list(existing) if isinstance(existing, list) else []
            for element in value.values:
                if element not in array:
                    array.append(element)
            updated[name] = array
        elif isinstance(value, ArrayRemove):
            existing = updated.get(name)
            array = list(existing) if isinstance(existing, list) else []
            updated[name] = [element for element in array if element not in value.values]
        elif value is SERVER_TIMESTAMP:
            updated[name] = now
        else:
            updated[name] = copy.deepcopy(value)
    
    return updated


def resolve_sentinels(data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Resolve sentinels in data written by a full-document set or add"""
    return apply_field_updates({}, data, now)
