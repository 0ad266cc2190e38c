"""Credential record data model."""

from datetime import datetime
from typing import Dict, List
from pydantic import BaseModel, ConfigDict, Field

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Record label for each field, in file order
RECORD_FIELDS = [
    ("site", "Site"),
    ("resource", "Database"),
    ("username", "User"),
    ("password", "Password"),
    ("host", "Host"),
    ("created_at", "Created"),
]


class Credential(BaseModel):
    """Generated secret bound to one site database."""

    model_config = ConfigDict(frozen=True)

    site: str = Field(..., min_length=1, description="Site identifier (domain)")
    resource: str = Field(..., min_length=1, description="Database name")
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    host: str = Field("localhost", min_length=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now().replace(microsecond=0))

    def to_record(self) -> str:
        """Render as a flat `Label: value` text block."""
        values = self.model_dump()
        values["created_at"] = self.created_at.strftime(TIMESTAMP_FORMAT)
        return "".join(f"{label}: {values[name]}\n" for name, label in RECORD_FIELDS)

    @classmethod
    def parse_record(cls, text: str) -> Dict[str, str]:
        """Split a record into raw field values keyed by model field name."""
        labels = {label: name for name, label in RECORD_FIELDS}
        values = {}
        for line in text.splitlines():
            label, sep, value = line.partition(":")
            if not sep:
                continue
            name = labels.get(label.strip())
            if name is not None:
                values[name] = value.strip()
        return values

    @staticmethod
    def missing_fields(values: Dict[str, str]) -> List[str]:
        return [label for name, label in RECORD_FIELDS if not values.get(name)]
