from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire format is camelCase; snake_case input is accepted as well."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True
