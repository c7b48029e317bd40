"""Reusable, strict base models for ledger data."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    A base model that converts field names to camel case when serializing.

    For example, the field name `block_number` in a Python model will be
    represented as `blockNumber` when it is serialized to JSON.

    Browser consumers read snapshots as JSON, so every public model speaks camel case
    on the wire while Python code keeps snake case attributes.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_default=True,
        arbitrary_types_allowed=True,
    )


class FrozenModel(CamelModel):
    """
    An immutable pydantic base model that rejects unknown fields.

    Log records and snapshots are facts: once built they never change.
    Lax validation is kept so JSON mirrors (warm-start cache rows) can be loaded
    back without hand-written coercion.
    """

    model_config = CamelModel.model_config | {
        "extra": "forbid",
        "frozen": True,
    }


class StrictBaseModel(FrozenModel):
    """A strict, immutable pydantic base model."""

    model_config = FrozenModel.model_config | {
        "strict": True,
    }
