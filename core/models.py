"""
core/models.py -- Shared pydantic base for every JSON document pcvisor speaks.

The browser client and the external agents use camelCase keys; Python code
uses snake_case attributes. CamelModel bridges the two with an alias
generator. FastAPI serializes response_model output by alias, and
populate_by_name lets internal code construct models with snake_case names.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self, **kwargs) -> dict:
        """model_dump in wire form (camelCase keys, JSON-safe values)."""
        return self.model_dump(by_alias=True, mode="json", **kwargs)
