"""
Shared pydantic base classes

Cards, segments and API bodies travel as camelCase JSON (startTime,
detailedSummary, batchIds) while python code uses snake_case fields.
"""

from pydantic import BaseModel as PydanticBaseModel, ConfigDict
from pydantic.alias_generators import to_camel

_CAMEL = dict(alias_generator=to_camel, populate_by_name=True)


class BaseModel(PydanticBaseModel):
    """Strict camelCase model; unknown keys in model output are an error"""

    model_config = ConfigDict(**_CAMEL, extra="forbid")

    def model_dump(self, **kwargs):
        # Serialized form is always the camelCase wire shape unless asked otherwise
        kwargs.setdefault("by_alias", True)
        return super().model_dump(**kwargs)

    def model_dump_json(self, **kwargs):
        kwargs.setdefault("by_alias", True)
        return super().model_dump_json(**kwargs)


class LenientModel(BaseModel):
    """For local model replies, which often add keys nobody asked for"""

    model_config = ConfigDict(**_CAMEL, extra="ignore")
