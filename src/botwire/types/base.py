"""Reusable, strict base models for client configuration and wire records."""

from pydantic import BaseModel, ConfigDict


class WireModel(BaseModel):
    """
    A base model for values exchanged with the remote service.

    Field names are kept as written. The remote service uses snake_case keys
    in both its REST bodies and its gateway payloads, so no alias generation
    is applied.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        validate_default=True,
        arbitrary_types_allowed=True,
    )


class StrictBaseModel(WireModel):
    """A strict, immutable pydantic base model."""

    model_config = WireModel.model_config | {
        "extra": "forbid",
        "frozen": True,
        "strict": True,
    }
