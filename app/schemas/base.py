"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that use `from_attributes=True` MUST inherit from BaseResponseSchema.
"""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel


# Money is returned as a JSON number rounded to cents
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(round(v, 2)), return_type=float, when_used="json"),
]


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models or
    service result dataclasses.

    Usage:
        class RunResponse(BaseResponseSchema):
            id: UUID
            run_number: int
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Allow population by field name or alias
        populate_by_name=True,
    )


class CamelCaseSchema(BaseModel):
    """
    Schemas exchanged with clients that speak camelCase on the wire
    (``runIds``, ``pickedCount``). Python code still uses snake_case names.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

