"""Types for the Kapacitor REST API.

Pydantic models describing request inputs and the records returned by the
API. Response models allow extra fields so that server-side attributes the
client does not model (stats, timestamps, links, ...) are preserved.
"""

import enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class TemplateType(str, enum.Enum):
    """Kind of data a template or task processes."""

    STREAM = "stream"
    BATCH = "batch"


class TaskStatus(str, enum.Enum):
    """Desired status of a task."""

    ENABLED = "enabled"
    DISABLED = "disabled"


class Dbrp(BaseModel):
    """A database / retention-policy pair a task reads from."""

    db: str = Field(min_length=1)
    rp: str = Field(min_length=1)


class FromTemplate(BaseModel):
    """Task source referencing an existing template."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["template"] = "template"
    template_id: str = Field(min_length=1)


class FromScript(BaseModel):
    """Task source carrying its own TICKscript."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["script"] = "script"
    type: TemplateType
    script: str = Field(min_length=1)


TaskSource = FromTemplate | FromScript


class Link(BaseModel):
    rel: str = ""
    href: str = ""


class Template(BaseModel):
    """Template as returned by the API."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str = ""
    script: str = ""
    vars: dict[str, Any] | None = None
    error: str = ""
    link: Link | None = None


class Task(BaseModel):
    """Task as returned by the API."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    template_id: str = Field("", alias="template-id")
    type: str = ""
    dbrps: list[Dbrp] = Field(default_factory=list)
    script: str = ""
    status: str = ""
    executing: bool = False
    vars: dict[str, Any] | None = None
    error: str = ""
    link: Link | None = None


class TopicHandler(BaseModel):
    """Handler attached to an alert topic."""

    model_config = ConfigDict(extra="allow")

    id: str
    kind: str = ""
    topic: str = ""
    actions: list[dict[str, Any]] = Field(default_factory=list)
    link: Link | None = None


class Topic(BaseModel):
    """Alert topic; read-only from the client's point of view."""

    model_config = ConfigDict(extra="allow")

    id: str
    level: str = ""
    collected: int = 0
    link: Link | None = None
