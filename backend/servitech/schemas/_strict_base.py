"""Strict schema baselines with forbidden extras by default."""

from pydantic import BaseModel, ConfigDict


class StrictRequestModel(BaseModel):
    """
    Request DTO base that always forbids unexpected fields.

    Fields declare ``AliasChoices`` so callers may send either the public
    Spanish keys (``titulo``, ``pagoId``) or the Python field names.
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        frozen=True,
    )
