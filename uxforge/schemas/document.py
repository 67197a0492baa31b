"""Extracted document schemas (structured PRD / wireframe data).

The extraction LLM is not reliable about shape, so every field is optional
and defaulted on ingress. A ``null`` means "not provided" and falls back to
the field default at any nesting level. Unknown keys are kept.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        return [value]
    if isinstance(value, list):
        return [item for item in value if item is not None]
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        coerce_numbers_to_str=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class DocumentSection(_CamelModel):
    title: str = ""
    content: str = ""
    type: str = "other"  # header | paragraph | list | table | image_description | other


class UserFlow(_CamelModel):
    name: str = ""
    steps: list[str] = Field(default_factory=list)
    screens: list[str] = Field(default_factory=list)
    priority: str = "medium"

    @field_validator("steps", "screens", mode="before")
    @classmethod
    def _coerce_list(cls, value):
        return _as_list(value)


class Feature(_CamelModel):
    name: str = ""
    description: str = ""
    priority: str = "medium"
    components: list[str] = Field(default_factory=list)

    @field_validator("components", mode="before")
    @classmethod
    def _coerce_list(cls, value):
        return _as_list(value)


class TechnicalSpec(_CamelModel):
    category: str = ""
    requirements: list[str] = Field(default_factory=list)

    @field_validator("requirements", mode="before")
    @classmethod
    def _coerce_list(cls, value):
        return _as_list(value)


class ExtractedDocumentData(_CamelModel):
    """Structured content extracted from an uploaded document."""

    document_type: str = "other"  # prd | wireframe | mockup | specification | other
    title: str | None = None
    summary: str | None = None
    sections: list[DocumentSection] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)
    user_flows: list[UserFlow] = Field(default_factory=list)
    features: list[Feature] = Field(default_factory=list)
    technical_specs: list[TechnicalSpec] = Field(default_factory=list)

    @field_validator(
        "sections", "requirements", "user_flows", "features", "technical_specs",
        mode="before",
    )
    @classmethod
    def _coerce_list(cls, value):
        return _as_list(value)

    @field_validator("document_type", mode="before")
    @classmethod
    def _default_type(cls, value):
        return value or "other"
