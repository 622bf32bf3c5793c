"""Request construction and client-side validation.

Each function in this module turns one logical operation into an
:class:`ApiRequest` describing the HTTP method, path, query parameters,
JSON body and the status code that signals success. Nothing here performs
I/O: invalid input raises :class:`InvalidArgumentError` before the client
ever talks to the network.
"""

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import pydantic

from .errors import InvalidArgumentError
from .types import Dbrp, FromScript, FromTemplate, TaskSource, TaskStatus, TemplateType

DEFAULT_PAGE_LIMIT = 100


@dataclass(frozen=True)
class ApiRequest:
    """Wire description of a single API call."""

    method: str
    path: str
    expected_status: int = 200
    params: dict[str, Any] = field(default_factory=dict)
    body: dict[str, Any] | None = None


def _segment(value: str, name: str) -> str:
    """Validate an identifier and percent-encode it for use in a path."""
    if not isinstance(value, str) or not value:
        msg = f"{name} must be a non-empty string"
        raise InvalidArgumentError(msg)
    return quote(value, safe="")


def _enum_value(enum_cls: type[TemplateType] | type[TaskStatus], value: Any, name: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        msg = f"Invalid {name} {value!r}, must be one of: {allowed}"
        raise InvalidArgumentError(msg) from None


def _script(script: Any) -> str:
    if not isinstance(script, str) or not script:
        msg = "script must be a non-empty TICKscript string"
        raise InvalidArgumentError(msg)
    return script


def _dbrps(dbrps: Iterable[Dbrp | Mapping[str, str]] | None) -> list[dict[str, str]]:
    # Materialize first so empty iterators are caught too
    items = [] if dbrps is None or isinstance(dbrps, (str, Mapping)) else list(dbrps)
    if not items:
        msg = "dbrps must be a non-empty sequence of database/retention-policy pairs"
        raise InvalidArgumentError(msg)
    try:
        return [Dbrp.model_validate(dbrp).model_dump() for dbrp in items]
    except pydantic.ValidationError as exc:
        msg = f"Invalid dbrp: {exc.errors()[0]['msg']}"
        raise InvalidArgumentError(msg) from exc


def _vars(task_vars: Any) -> dict[str, Any]:
    if not isinstance(task_vars, Mapping):
        msg = "vars must be a mapping of variable name to typed value"
        raise InvalidArgumentError(msg)
    try:
        json.dumps(task_vars)
    except (TypeError, ValueError) as exc:
        msg = f"vars must be JSON serializable: {exc}"
        raise InvalidArgumentError(msg) from exc
    return dict(task_vars)


def _actions(actions: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Normalize handler actions to a list and check each one is usable."""
    if isinstance(actions, Mapping):
        actions = [actions]
    if actions is None or isinstance(actions, str):
        actions = []

    normalized = []
    for action in actions:
        if not isinstance(action, Mapping) or not action:
            msg = "Each action must be a non-empty mapping"
            raise InvalidArgumentError(msg)
        if not action.get("kind"):
            msg = f"Each action needs a 'kind', got {dict(action)!r}"
            raise InvalidArgumentError(msg)
        normalized.append(dict(action))
    if not normalized:
        msg = "actions must contain at least one action"
        raise InvalidArgumentError(msg)
    return normalized


def _page_params(offset: int, limit: int) -> dict[str, int]:
    if offset < 0:
        msg = "offset cannot be negative"
        raise InvalidArgumentError(msg)
    if limit <= 0:
        msg = "limit must be positive"
        raise InvalidArgumentError(msg)
    return {"offset": offset, "limit": limit}


def _task_source(
    template_id: str | None,
    task_type: TemplateType | str | None,
    script: str | None,
    source: TaskSource | None,
) -> dict[str, str]:
    if source is not None:
        if template_id is not None or task_type is not None or script is not None:
            msg = "Pass either a task source or template_id/type/script, not both"
            raise InvalidArgumentError(msg)
        if isinstance(source, FromTemplate):
            template_id = source.template_id
        elif isinstance(source, FromScript):
            task_type, script = source.type, source.script
        else:
            msg = f"Unknown task source {source!r}"
            raise InvalidArgumentError(msg)

    if (template_id is None and task_type is None and script is None) or (
        template_id is not None and (task_type is not None or script is not None)
    ):
        msg = "Must specify either a template ID or a script and type"
        raise InvalidArgumentError(msg)
    if template_id is None and (task_type is None or script is None):
        msg = "Must specify both task type and script when not using a template ID"
        raise InvalidArgumentError(msg)

    if template_id is not None:
        _segment(template_id, "template_id")
        return {"template-id": template_id}
    return {"type": _enum_value(TemplateType, task_type, "type"), "script": _script(script)}


# -- Templates ---------------------------------------------------------------


def define_template(template_id: str, template_type: TemplateType | str, script: str) -> ApiRequest:
    """Build a template definition request.

    Args:
        template_id: Unique template id.
        template_type: "stream" or "batch".
        script: TICKscript source.

    Returns:
        ``POST /templates`` request expecting 200.

    Raises:
        InvalidArgumentError: If the id or script is empty, or the type is
            not stream or batch.
    """
    _segment(template_id, "template_id")
    body = {
        "id": template_id,
        "type": _enum_value(TemplateType, template_type, "type"),
        "script": _script(script),
    }
    return ApiRequest("POST", "/templates", body=body)


def update_template(
    template_id: str,
    template_type: TemplateType | str | None = None,
    script: str | None = None,
) -> ApiRequest | None:
    """Build a partial template update, or ``None`` if nothing would change."""
    path = f"/templates/{_segment(template_id, 'template_id')}"
    body: dict[str, Any] = {}
    if template_type is not None:
        body["type"] = _enum_value(TemplateType, template_type, "type")
    if script is not None:
        body["script"] = _script(script)
    if not body:
        return None
    return ApiRequest("PATCH", path, body=body)


def delete_template(template_id: str) -> ApiRequest:
    """Build ``DELETE /templates/{id}``, which answers 204."""
    return ApiRequest("DELETE", f"/templates/{_segment(template_id, 'template_id')}", 204)


def get_template(template_id: str) -> ApiRequest:
    """Build ``GET /templates/{id}``."""
    return ApiRequest("GET", f"/templates/{_segment(template_id, 'template_id')}")


def list_templates_page(offset: int = 0, limit: int = DEFAULT_PAGE_LIMIT) -> ApiRequest:
    """Build the request for one page of templates.

    Raises:
        InvalidArgumentError: If offset is negative or limit is not positive.
    """
    return ApiRequest("GET", "/templates", params=_page_params(offset, limit))


# -- Tasks -------------------------------------------------------------------


def define_task(
    task_id: str,
    dbrps: Iterable[Dbrp | Mapping[str, str]],
    *,
    template_id: str | None = None,
    task_type: TemplateType | str | None = None,
    script: str | None = None,
    source: TaskSource | None = None,
    status: TaskStatus | str = TaskStatus.ENABLED,
    task_vars: Mapping[str, Any] | None = None,
) -> ApiRequest:
    """Build a task definition request.

    The task's source is either a template (``template_id`` or
    :class:`FromTemplate`) or an inline script (``task_type`` and ``script``,
    or :class:`FromScript`). Exactly one of the two must be given.

    Raises:
        InvalidArgumentError: If the source is ambiguous or incomplete, dbrps
            is empty, type/status are not allowed values, or vars cannot be
            encoded as JSON.
    """
    _segment(task_id, "task_id")
    body: dict[str, Any] = {
        "id": task_id,
        "dbrps": _dbrps(dbrps),
        "status": _enum_value(TaskStatus, status, "status"),
    }
    body.update(_task_source(template_id, task_type, script, source))
    if task_vars is not None:
        body["vars"] = _vars(task_vars)
    return ApiRequest("POST", "/tasks", body=body)


def update_task(
    task_id: str,
    *,
    template_id: str | None = None,
    task_type: TemplateType | str | None = None,
    dbrps: Iterable[Dbrp | Mapping[str, str]] | None = None,
    script: str | None = None,
    status: TaskStatus | str | None = None,
    task_vars: Mapping[str, Any] | None = None,
) -> ApiRequest | None:
    """Build a partial task update, or ``None`` if nothing would change.

    ``None`` means "leave unchanged". The requested status is sent as given.
    """
    path = f"/tasks/{_segment(task_id, 'task_id')}"
    body: dict[str, Any] = {}
    if template_id is not None:
        _segment(template_id, "template_id")
        body["template-id"] = template_id
    if task_type is not None:
        body["type"] = _enum_value(TemplateType, task_type, "type")
    if dbrps is not None:
        body["dbrps"] = _dbrps(dbrps)
    if script is not None:
        body["script"] = _script(script)
    if status is not None:
        body["status"] = _enum_value(TaskStatus, status, "status")
    if task_vars is not None:
        body["vars"] = _vars(task_vars)
    if not body:
        return None
    return ApiRequest("PATCH", path, body=body)


def delete_task(task_id: str) -> ApiRequest:
    """Build ``DELETE /tasks/{id}``, which answers 204."""
    return ApiRequest("DELETE", f"/tasks/{_segment(task_id, 'task_id')}", 204)


def get_task(task_id: str) -> ApiRequest:
    """Build ``GET /tasks/{id}`` for a task's full details."""
    return ApiRequest("GET", f"/tasks/{_segment(task_id, 'task_id')}")


def list_task_ids_page(offset: int = 0, limit: int = DEFAULT_PAGE_LIMIT) -> ApiRequest:
    """Build the request for one page of task ids (``fields=id``)."""
    return ApiRequest("GET", "/tasks", params={"fields": "id", **_page_params(offset, limit)})


# -- Alert topics and handlers -------------------------------------------------


def _handlers_path(topic: str) -> str:
    return f"/alerts/topics/{_segment(topic, 'topic')}/handlers"


def define_topic_handler(
    handler_id: str,
    topic: str,
    actions: Mapping[str, Any] | Iterable[Mapping[str, Any]],
) -> ApiRequest:
    """Build a handler creation request for a topic.

    Args:
        handler_id: Handler id, unique within the topic.
        topic: Topic the handler listens on.
        actions: One action mapping or a sequence of them; each needs a
            ``kind``.

    Returns:
        ``POST /alerts/topics/{topic}/handlers`` request expecting 200.

    Raises:
        InvalidArgumentError: If there are no actions or one is empty.
    """
    path = _handlers_path(topic)
    _segment(handler_id, "handler_id")
    body = {"id": handler_id, "actions": _actions(actions)}
    return ApiRequest("POST", path, body=body)


def update_topic_handler(
    handler_id: str,
    topic: str,
    actions: Mapping[str, Any] | Iterable[Mapping[str, Any]],
) -> ApiRequest:
    """Build a full replacement of a topic handler."""
    path = f"{_handlers_path(topic)}/{_segment(handler_id, 'handler_id')}"
    body = {"id": handler_id, "actions": _actions(actions)}
    return ApiRequest("PUT", path, body=body)


def delete_topic_handler(handler_id: str, topic: str) -> ApiRequest:
    path = f"{_handlers_path(topic)}/{_segment(handler_id, 'handler_id')}"
    return ApiRequest("DELETE", path, 204)


def get_topic_handler(handler_id: str, topic: str) -> ApiRequest:
    return ApiRequest("GET", f"{_handlers_path(topic)}/{_segment(handler_id, 'handler_id')}")


def list_topic_handlers(topic: str) -> ApiRequest:
    return ApiRequest("GET", _handlers_path(topic))


def list_topics() -> ApiRequest:
    return ApiRequest("GET", "/alerts/topics")


def ping() -> ApiRequest:
    """Build ``GET /ping``, which answers 204 when the server is up."""
    return ApiRequest("GET", "/ping", 204)
