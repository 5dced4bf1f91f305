from dataclasses import fields
from datetime import datetime
from typing import Any, Dict

from ..core.clock import from_db


class BaseModel:
    """Base model class for database entities"""

    # Columns stored as ISO strings and as 0/1 integers
    datetime_fields: tuple = ()
    bool_fields: tuple = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Create instance from a database row, ignoring unknown columns"""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        for name in cls.datetime_fields:
            if name in values:
                values[name] = from_db(values[name])
        for name in cls.bool_fields:
            if name in values and values[name] is not None:
                values[name] = bool(values[name])
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert instance to dictionary"""
        result = {}
        for k, v in self.__dict__.items():
            if k.startswith('_'):
                continue
            result[k] = v.isoformat() if isinstance(v, datetime) else v
        return result
