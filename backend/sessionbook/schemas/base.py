"""
Base schemas and request parsing shared by the service layer.
"""
from typing import Any, Mapping, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from ..core.exceptions import ValidationException

ModelT = TypeVar("ModelT", bound=BaseModel)


class StandardizedModel(BaseModel):
    """Base model for responses built from ORM objects"""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)


class StrictRequestModel(BaseModel):
    """Request DTO base that always forbids unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, use_enum_values=True)


def parse_request(model: Type[ModelT], data: Union[ModelT, Mapping[str, Any]]) -> ModelT:
    """
    Accept either a validated model or raw input and return the model.

    Raises:
        ValidationException: With pydantic's error list in ``details``
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        first = errors[0]["msg"] if errors else "Invalid input"
        raise ValidationException(
            f"Invalid {model.__name__}: {first}", code="VALIDATION_ERROR", details={"errors": errors}
        ) from exc
