from typing import Any, Dict, List, Optional, Type, Union
from pydantic import BaseModel

SchemaDefinition = Union[Type[BaseModel], Dict[str, Any]]


class SchemaRegistry:
    """Named response schemas used for structured turns"""

    def __init__(self):
        self.schemas: Dict[str, SchemaDefinition] = {}

    def register_schema(self, name: str, schema: SchemaDefinition):
        """Register a pydantic model class or a JSON-schema dict under a name"""

        if not name:
            raise ValueError("Schema name cannot be empty")

        if isinstance(schema, dict):
            # with_structured_output needs a title for JSON-schema dicts
            schema = {"title": name, **schema}
        elif not (isinstance(schema, type) and issubclass(schema, BaseModel)):
            raise TypeError(f"Schema '{name}' must be a pydantic model or a JSON-schema dict")

        self.schemas[name] = schema

    def get_schema(self, name: str) -> Optional[SchemaDefinition]:
        return self.schemas.get(name)

    def list_schemas(self) -> List[str]:
        return sorted(self.schemas)

    def __contains__(self, name: str) -> bool:
        return name in self.schemas
