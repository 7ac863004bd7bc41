from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

class CamelModel(BaseModel):
    """Wire models speak camelCase (orderId, senderRole) but accept snake_case too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
