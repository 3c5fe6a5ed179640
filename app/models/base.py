# app/models/base.py
from typing import Any, Dict
from bson import ObjectId
from pydantic import BaseModel, ConfigDict, model_validator

class DocumentModel(BaseModel):
    """A MongoDB document with its ObjectIds rendered as strings."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    @model_validator(mode="before")
    @classmethod
    def _stringify_object_ids(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: str(v) if isinstance(v, ObjectId) else v for k, v in data.items()}
        return data

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        return cls.model_validate(document)
