# specpilot/models/spec.py
"""
Normalized API description consumed by the pipeline.

Import/normalization of OpenAPI documents happens elsewhere; these models only
describe the already-normalized shape.
"""
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


BODY_METHODS = {"POST", "PUT", "PATCH"}

# Query parameter names treated as a page-size knob
PAGINATION_PARAMS = ("limit", "page_size", "pageSize", "per_page", "perPage", "size")

_PATH_PARAM_RE = re.compile(r"\{([^}]+)\}")


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Parameter(CamelModel):
    name: str
    location: str = Field(default="query", alias="in")
    required: bool = False
    schema_: Optional[Dict[str, Any]] = Field(default=None, alias="schema")
    description: Optional[str] = None


class RequestBody(CamelModel):
    required: bool = False
    content_type: str = "application/json"
    schema_: Optional[Dict[str, Any]] = Field(default=None, alias="schema")


class ResponseSpec(CamelModel):
    status_code: str
    description: Optional[str] = None


class Operation(CamelModel):
    operation_id: str
    method: str
    path: str
    summary: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    parameters: List[Parameter] = Field(default_factory=list)
    request_body: Optional[RequestBody] = None
    responses: List[ResponseSpec] = Field(default_factory=list)

    @property
    def upper_method(self) -> str:
        return self.method.upper()

    @property
    def path_params(self) -> List[str]:
        """Path template variables, in order of appearance."""
        return _PATH_PARAM_RE.findall(self.path)

    @property
    def has_path_params(self) -> bool:
        return bool(self.path_params)

    @property
    def accepts_body(self) -> bool:
        return self.upper_method in BODY_METHODS

    @property
    def is_creation(self) -> bool:
        return self.upper_method == "POST" and not self.has_path_params

    @property
    def is_list(self) -> bool:
        return self.upper_method == "GET" and not self.has_path_params

    @property
    def body_schema(self) -> Optional[Dict[str, Any]]:
        if self.request_body and self.request_body.schema_:
            return self.request_body.schema_
        return None

    @property
    def body_properties(self) -> Dict[str, Dict[str, Any]]:
        """Top-level properties of the request body schema that declare a type."""
        schema = self.body_schema or {}
        props = schema.get("properties") or {}
        return {
            name: prop for name, prop in props.items()
            if isinstance(prop, dict) and prop.get("type")
        }

    @property
    def success_status(self) -> int:
        """First declared 2xx response, 200 when none is declared."""
        for response in self.responses:
            if response.status_code.isdigit() and 200 <= int(response.status_code) < 300:
                return int(response.status_code)
        return 200

    @property
    def pagination_param(self) -> str:
        declared = {p.name for p in self.parameters if p.location == "query"}
        for name in PAGINATION_PARAMS:
            if name in declared:
                return name
        return "limit"

    def resolve_path(self, value: Any) -> str:
        """Path with every template variable replaced by `value`."""
        return _PATH_PARAM_RE.sub(str(value), self.path)

    @property
    def resource(self) -> str:
        """First literal path segment, used to group tests into modules."""
        for segment in self.path.strip("/").split("/"):
            if segment and not segment.startswith("{"):
                return segment
        return "root"


class NormalizedSpec(CamelModel):
    id: str
    title: str = "API"
    version: str = "1.0.0"
    base_url: str = "http://localhost:8080"
    operations: List[Operation] = Field(default_factory=list)
    schemas: Dict[str, Any] = Field(default_factory=dict)

    def find_operation(self, operation_id: str) -> Optional[Operation]:
        for op in self.operations:
            if op.operation_id == operation_id:
                return op
        return None
