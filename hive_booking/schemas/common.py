from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for request and response bodies exchanged as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


TIME_LABEL_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
BLOCK_END_PATTERN = r"^(([01]\d|2[0-3]):[0-5]\d|24:00)$"
