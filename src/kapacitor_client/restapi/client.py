"""Kapacitor REST API client.

Provides an HTTP client with thread-local connections, typed errors and
response validation using Pydantic models. Request construction and
validation live in :mod:`.builder`; this module executes the requests.
"""

import threading
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

import httpx
import pydantic
import structlog

from ..metrics import RequestMetrics
from . import builder
from .errors import (
    InvalidArgumentError,
    ResponseDecodeError,
    TransportError,
    UnexpectedStatusError,
)
from .types import (
    Dbrp,
    Task,
    TaskSource,
    TaskStatus,
    Template,
    TemplateType,
    Topic,
    TopicHandler,
)

logger = structlog.get_logger(__name__)

DEFAULT_URL = "http://localhost:9092"

DEFAULT_API_VERSION = "v1"

DEFAULT_TIMEOUT = 30.0

DEFAULT_PAGE_LIMIT = builder.DEFAULT_PAGE_LIMIT

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


def _decode_body(response: httpx.Response) -> Any:
    """Decode a JSON response body, returning None for an empty body."""
    if not response.content.strip():
        return None
    try:
        return response.json()
    except ValueError as exc:
        msg = "Failed to decode response message"
        raise ResponseDecodeError(msg) from exc


def _error_message(response: httpx.Response) -> str | None:
    """Extract the ``error`` field of a failed response, if it has one."""
    try:
        data = _decode_body(response)
    except ResponseDecodeError:
        return None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return None


def _parse(model: type[ModelT], data: Any) -> ModelT:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        msg = f"Unexpected {model.__name__} in response: {exc}"
        raise ResponseDecodeError(msg) from exc


def _items(data: Any, key: str) -> list[Any]:
    """Return the list stored under ``key`` in a listing response."""
    if not isinstance(data, dict):
        msg = f"Expected a JSON object with '{key}', got {type(data).__name__}"
        raise ResponseDecodeError(msg)
    items = data.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        msg = f"Expected '{key}' to be a list, got {type(items).__name__}"
        raise ResponseDecodeError(msg)
    return items


def _listed_id(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict) and isinstance(item.get("id"), str):
        return item["id"]
    msg = f"Listing entry has no id: {item!r}"
    raise ResponseDecodeError(msg)


class KapacitorRestApiClient:
    """HTTP client for the Kapacitor REST API.

    Validates inputs, issues requests against
    ``{base_url}/kapacitor/{api_version}`` and returns Pydantic-validated
    records. Every failure is raised as a subclass of
    :class:`~.errors.KapacitorError`; nothing is retried.

    Thread-safe through thread-local storage of httpx.Client instances.
    Can be used as a context manager for automatic cleanup.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
        metrics: RequestMetrics | None = None,
    ):
        """Initialize the REST API client.

        Args:
            base_url: Scheme and host of the Kapacitor server
                (e.g., "http://localhost:9092").
            api_version: Kapacitor API version (default: v1).
            timeout: Request timeout in seconds (default: 30.0).
            transport: Optional httpx transport, e.g. ``httpx.MockTransport``
                in tests.
            metrics: Optional request metrics to record into.

        Raises:
            ValueError: If base_url or api_version is empty or timeout is
                not positive.
        """
        if not base_url:
            msg = "base_url cannot be empty"
            raise ValueError(msg)
        if not api_version:
            msg = "api_version cannot be empty"
            raise ValueError(msg)
        if timeout <= 0:
            msg = "timeout must be positive"
            raise ValueError(msg)

        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.api_url = f"{self.base_url}/kapacitor/{api_version}"
        self._timeout = timeout
        self._transport = transport
        self._metrics = metrics

        self._headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        # Use thread-local storage for httpx.Client (thread safety)
        self._local = threading.local()
        # Every client created by any thread with its owner, so close() can
        # release them all and clients of finished threads can be dropped
        self._clients: list[tuple[threading.Thread, httpx.Client]] = []
        self._clients_lock = threading.Lock()

    @property
    def client(self) -> httpx.Client:
        """Get or create thread-local httpx client.

        Each thread gets its own httpx.Client instance for thread safety.
        Clients are created lazily and reused within the same thread.

        Returns:
            Thread-local httpx.Client instance.
        """
        if not hasattr(self._local, "client") or self._local.client.is_closed:
            self._local.client = httpx.Client(
                base_url=self.api_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
            with self._clients_lock:
                self._clients.append((threading.current_thread(), self._local.client))
        return self._local.client

    def __enter__(self):
        """Enter context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager and cleanup resources."""
        self.close()

    def close(self):
        """Close every HTTP client opened by this instance."""
        with self._clients_lock:
            clients, self._clients = self._clients, []
        for _, client in clients:
            if not client.is_closed:
                client.close()

    def _close_finished_thread_clients(self) -> None:
        """Release the clients of threads that have exited, e.g. pool workers."""
        with self._clients_lock:
            finished = [client for thread, client in self._clients if not thread.is_alive()]
            self._clients = [entry for entry in self._clients if entry[0].is_alive()]
        # An injected transport is shared by every thread's client and closing
        # any one client would close it, so those clients are only dropped
        if self._transport is not None:
            return
        for client in finished:
            if not client.is_closed:
                client.close()

    def _record(self, method: str, status: str, duration: float) -> None:
        if self._metrics is not None:
            self._metrics.observe(method, status, duration)

    def _execute(self, request: builder.ApiRequest) -> Any:
        """Send a request and return its decoded JSON body.

        Args:
            request: Request built by one of the :mod:`.builder` functions.

        Returns:
            Decoded JSON body, or None if the response body is empty.

        Raises:
            TransportError: If the HTTP request fails.
            UnexpectedStatusError: If the status is not the expected one.
            ResponseDecodeError: If the body is not valid JSON.
        """
        start_time = time.time()
        logger.debug(
            "Making API request",
            method=request.method,
            endpoint=request.path,
            params=request.params,
        )
        try:
            response = self.client.request(
                request.method,
                request.path,
                params=request.params or None,
                json=request.body,
            )
        except httpx.HTTPError as exc:
            duration = time.time() - start_time
            self._record(request.method, "error", duration)
            logger.exception(
                "API request failed",
                method=request.method,
                endpoint=request.path,
                duration_seconds=round(duration, 3),
            )
            raise TransportError(request.method, request.path, exc) from exc

        duration = time.time() - start_time
        self._record(request.method, str(response.status_code), duration)
        logger.debug(
            "API request completed",
            status_code=response.status_code,
            duration_seconds=round(duration, 3),
        )

        if response.status_code != request.expected_status:
            error_message = _error_message(response)
            logger.error(
                "API returned unexpected status",
                method=request.method,
                endpoint=request.path,
                status_code=response.status_code,
                expected_status=request.expected_status,
                error_message=error_message,
            )
            raise UnexpectedStatusError(
                request.method,
                request.path,
                response.status_code,
                response.reason_phrase,
                error_message,
            )
        return _decode_body(response)

    # -- Templates -----------------------------------------------------------

    def define_template(
        self,
        template_id: str,
        template_type: TemplateType | str,
        script: str,
    ) -> Template:
        """Create a template.

        Args:
            template_id: Unique template id.
            template_type: "stream" or "batch".
            script: TICKscript source.

        Returns:
            The template as stored by Kapacitor.

        Raises:
            InvalidArgumentError: If template_type is not stream or batch.
        """
        data = self._execute(builder.define_template(template_id, template_type, script))
        return _parse(Template, data)

    def update_template(
        self,
        template_id: str,
        template_type: TemplateType | str | None = None,
        script: str | None = None,
    ) -> Template | None:
        """Update the given fields of a template.

        Returns:
            The updated template, or None if no field was given, in which
            case no request is made.
        """
        request = builder.update_template(template_id, template_type, script)
        if request is None:
            logger.debug("Skipping empty template update", template_id=template_id)
            return None
        return _parse(Template, self._execute(request))

    def delete_template(self, template_id: str) -> Any:
        """Delete a template.

        Args:
            template_id: Id of the template to delete.

        Returns:
            Decoded response body, None when the body is empty.

        Raises:
            UnexpectedStatusError: If the server does not answer 204.
        """
        return self._execute(builder.delete_template(template_id))

    def get_template(self, template_id: str) -> Template:
        """Fetch a single template.

        Raises:
            UnexpectedStatusError: If the template does not exist.
        """
        return _parse(Template, self._execute(builder.get_template(template_id)))

    def list_templates(
        self,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> list[Template]:
        """Fetch every template, page by page.

        Requests pages starting at ``offset`` and advancing by ``limit``
        until the server returns an empty page.

        Returns:
            All templates in server order.
        """
        templates: list[Template] = []
        while True:
            data = self._execute(builder.list_templates_page(offset, limit))
            page = _items(data, "templates")
            if not page:
                break
            templates.extend(_parse(Template, item) for item in page)
            offset += limit
        return templates

    # -- Tasks ---------------------------------------------------------------

    def define_task(
        self,
        task_id: str,
        dbrps: Iterable[Dbrp | Mapping[str, str]],
        *,
        template_id: str | None = None,
        task_type: TemplateType | str | None = None,
        script: str | None = None,
        source: TaskSource | None = None,
        status: TaskStatus | str = TaskStatus.ENABLED,
        task_vars: Mapping[str, Any] | None = None,
    ) -> Task:
        """Create a task from a template or from an inline script.

        Args:
            task_id: Unique task id.
            dbrps: Database/retention-policy pairs the task reads from.
            template_id: Template to instantiate. Excludes task_type/script.
            task_type: "stream" or "batch", required with script.
            script: TICKscript source, required with task_type.
            source: :class:`FromTemplate` or :class:`FromScript`, as an
                alternative to the three keywords above.
            status: "enabled" (default) or "disabled".
            task_vars: Template variables, name to ``{"type", "value"}``.

        Returns:
            The task as stored by Kapacitor.

        Raises:
            InvalidArgumentError: If the task source is missing or ambiguous,
                dbrps is empty, or type/status have disallowed values.
        """
        request = builder.define_task(
            task_id,
            dbrps,
            template_id=template_id,
            task_type=task_type,
            script=script,
            source=source,
            status=status,
            task_vars=task_vars,
        )
        return _parse(Task, self._execute(request))

    def update_task(
        self,
        task_id: str,
        *,
        template_id: str | None = None,
        task_type: TemplateType | str | None = None,
        dbrps: Iterable[Dbrp | Mapping[str, str]] | None = None,
        script: str | None = None,
        status: TaskStatus | str | None = None,
        task_vars: Mapping[str, Any] | None = None,
    ) -> Task | None:
        """Update the given fields of a task.

        Returns:
            The updated task, or None if no field was given, in which case
            no request is made.
        """
        request = builder.update_task(
            task_id,
            template_id=template_id,
            task_type=task_type,
            dbrps=dbrps,
            script=script,
            status=status,
            task_vars=task_vars,
        )
        if request is None:
            logger.debug("Skipping empty task update", task_id=task_id)
            return None
        return _parse(Task, self._execute(request))

    def delete_task(self, task_id: str) -> Any:
        """Delete a task.

        Args:
            task_id: Id of the task to delete.

        Returns:
            Decoded response body, None when the body is empty.

        Raises:
            UnexpectedStatusError: If the server does not answer 204, with
                the server's error message when it sent one.
        """
        return self._execute(builder.delete_task(task_id))

    def get_task(self, task_id: str) -> Task:
        """Fetch the full details of a task.

        Raises:
            UnexpectedStatusError: If the task does not exist.
            ResponseDecodeError: If the response is not a task record.
        """
        return _parse(Task, self._execute(builder.get_task(task_id)))

    def list_tasks(
        self,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_LIMIT,
        detail_workers: int | None = None,
    ) -> list[Task]:
        """Fetch every task with its full details.

        Pages through task ids (``fields=id``) until an empty page, fetching
        the details of each id as it is discovered.

        Args:
            offset: Offset of the first id page.
            limit: Ids per page.
            detail_workers: If set, fetch the details of each page with this
                many threads instead of one at a time. Order is preserved.

        Returns:
            Tasks in the order their ids were listed.

        Raises:
            InvalidArgumentError: If detail_workers is not positive.
        """
        if detail_workers is not None and detail_workers <= 0:
            msg = "detail_workers must be positive"
            raise InvalidArgumentError(msg)

        pool = ThreadPoolExecutor(max_workers=detail_workers) if detail_workers else None
        tasks: list[Task] = []
        try:
            while True:
                data = self._execute(builder.list_task_ids_page(offset, limit))
                page = _items(data, "tasks")
                if not page:
                    break
                task_ids = [_listed_id(item) for item in page]
                if pool is None:
                    tasks.extend(self.get_task(task_id) for task_id in task_ids)
                else:
                    tasks.extend(pool.map(self.get_task, task_ids))
                offset += limit
        finally:
            if pool is not None:
                pool.shutdown(cancel_futures=True)
                self._close_finished_thread_clients()
        return tasks

    # -- Alert topics and handlers -------------------------------------------

    def define_topic_handler(
        self,
        handler_id: str,
        topic: str,
        actions: Mapping[str, Any] | Iterable[Mapping[str, Any]],
    ) -> TopicHandler:
        """Create a handler on a topic.

        A single action mapping is accepted and sent as a one-element list.
        """
        request = builder.define_topic_handler(handler_id, topic, actions)
        return _parse(TopicHandler, self._execute(request))

    def update_topic_handler(
        self,
        handler_id: str,
        topic: str,
        actions: Mapping[str, Any] | Iterable[Mapping[str, Any]],
    ) -> TopicHandler:
        """Replace the actions of an existing topic handler."""
        request = builder.update_topic_handler(handler_id, topic, actions)
        return _parse(TopicHandler, self._execute(request))

    def delete_topic_handler(self, handler_id: str, topic: str) -> Any:
        """Delete a handler from a topic.

        Args:
            handler_id: Id of the handler.
            topic: Topic the handler belongs to.

        Returns:
            Decoded response body, None when the body is empty.
        """
        return self._execute(builder.delete_topic_handler(handler_id, topic))

    def get_topic_handler(self, handler_id: str, topic: str) -> TopicHandler:
        """Fetch a single handler of a topic."""
        return _parse(TopicHandler, self._execute(builder.get_topic_handler(handler_id, topic)))

    def list_topic_handlers(self, topic: str) -> list[TopicHandler]:
        """Return every handler of a topic, unpaginated."""
        data = self._execute(builder.list_topic_handlers(topic))
        return [_parse(TopicHandler, item) for item in _items(data, "handlers")]

    def list_topics(self) -> list[str]:
        """Return the ids of all alert topics."""
        data = self._execute(builder.list_topics())
        return [_parse(Topic, item).id for item in _items(data, "topics")]

    def ping(self) -> None:
        """Check that the server is reachable."""
        self._execute(builder.ping())
