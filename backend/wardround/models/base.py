# /backend/wardround/models/base.py

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire and in MongoDB."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


class LenientModel(CamelModel):
    """
    Record shape for LLM output: a null in a text field becomes "".

    Partial structured capture beats rejection, so only fields declared
    without a default can make validation fail.
    """

    @field_validator("*", mode="before")
    @classmethod
    def _none_to_empty_string(cls, value, info):
        if value is None:
            field = cls.model_fields.get(info.field_name)
            if field is not None and field.annotation is str:
                return ""
        return value


def coerce_choice(value, choices, default):
    """Case-insensitive match of value against an Enum; default when unknown."""
    if isinstance(value, choices):
        return value
    text = str(value or "").strip().lower()
    for choice in choices:
        if choice.value.lower() == text:
            return choice
    return default
