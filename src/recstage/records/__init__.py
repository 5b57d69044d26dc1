"""recstage record formats: parsed metadata with a common capability set."""

from recstage.records.base import BaseRecord, RecordParseError
from recstage.records.dc import DcRecord
from recstage.records.factory import RecordFactory
from recstage.records.json_record import JsonRecord

__all__ = [
    "BaseRecord",
    "DcRecord",
    "JsonRecord",
    "RecordFactory",
    "RecordParseError",
]
