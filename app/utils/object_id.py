# app/utils/object_id.py
from typing import Any
from bson import ObjectId, errors
from app.exceptions import ValidationError

def to_object_id(value: Any, label: str = "ID") -> ObjectId:
    """Coerce a path/body identifier into an ObjectId or raise a validation error."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (errors.InvalidId, TypeError):
        raise ValidationError(
            message=f"Invalid {label} format",
            details=f"The provided {label} '{value}' is not a valid MongoDB ObjectId",
            example="Expected format: '507f1f77bcf86cd799439011' (24 characters, hexadecimal)"
        )
