"""Shared pydantic base for persisted models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Immutable model that serializes with camelCase keys.

    Python code uses snake_case attributes; the persisted JSON uses the
    camelCase shape (``runId``, ``errorCount``...). Both spellings are
    accepted on input.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
