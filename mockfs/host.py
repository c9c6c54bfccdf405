# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Serve a :class:`~mockfs.server.MockServer` over HTTP on the loopback.

``make_wsgi_app`` wraps a server in a Falcon WSGI application with one
route, ``POST {prefix}/{method}``.  The request body is an Arrow IPC
request stream and the response body an Arrow IPC response stream (see
:mod:`mockfs.wire`).

:class:`MockHost` runs that application on a waitress listener bound to
an ephemeral port, in a background thread::

    with MockHost(server) as host:
        client = connect(host.address)
        ...

Harness violations raised by a handler are logged at CRITICAL, recorded
on the server (see :meth:`MockServer.check`) and returned to the client
as an error with HTTP status 500.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from http import HTTPStatus
from io import BytesIO, IOBase
from typing import Any, Literal

import falcon
import pyarrow as pa
import waitress
from pyarrow import ipc

from mockfs.errors import HarnessError, MatchError, RpcError, StoreError, VersionError
from mockfs.server import MockServer
from mockfs.service import MethodKind, RpcMethodInfo, validate_implementation
from mockfs.utils import IPCError
from mockfs.wire import (
    MESSAGE_SCHEMA,
    current_request_id,
    error_response_stream,
    read_request,
    write_error_batch,
    write_response,
)

__all__ = [
    "ARROW_CONTENT_TYPE",
    "HostConfig",
    "MockHost",
    "make_wsgi_app",
]

ARROW_CONTENT_TYPE = "application/vnd.apache.arrow.stream"
_REQUEST_ID_HEADER = "X-Request-ID"

_logger = logging.getLogger("mockfs.server")
_access_logger = logging.getLogger("mockfs.access")
_host_logger = logging.getLogger("mockfs.host")

# Errors in the request itself rather than in the handler
_PROTOCOL_ERRORS = (pa.ArrowInvalid, IPCError, RpcError, VersionError, TypeError, ValueError)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HostConfig:
    """Listener settings for :class:`MockHost`.

    Attributes:
        host: Interface to bind.
        port: TCP port, ``0`` for an ephemeral one.
        threads: Worker threads serving calls concurrently.
        prefix: URL prefix of the RPC routes.
        stop_timeout: Seconds ``stop()`` waits for the serving thread.

    """

    host: str = "127.0.0.1"
    port: int = 0
    threads: int = 4
    prefix: str = "/mockfs"
    stop_timeout: float = 5.0

    def __post_init__(self) -> None:
        """Validate field values."""
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port must be in [0, 65535], got {self.port}")
        if self.threads < 1:
            raise ValueError(f"threads must be >= 1, got {self.threads}")
        if self.prefix and not self.prefix.startswith("/"):
            raise ValueError(f"prefix must start with '/', got {self.prefix!r}")
        if self.stop_timeout <= 0:
            raise ValueError(f"stop_timeout must be > 0, got {self.stop_timeout}")


# ---------------------------------------------------------------------------
# Stream adapters
# ---------------------------------------------------------------------------


class _IpcServerStream:
    """ServerStream writing each response as a batch of the response stream."""

    __slots__ = ("_writer", "sent")

    def __init__(self, writer: ipc.RecordBatchStreamWriter) -> None:
        self._writer = writer
        self.sent = 0

    def send(self, response: Any) -> None:
        write_response(self._writer, response)
        self.sent += 1


class _IpcSubscribeStream(_IpcServerStream):
    """SubscribeStream that reads client messages lazily from the request body."""

    __slots__ = ("_info", "_reader", "_source")

    def __init__(self, writer: ipc.RecordBatchStreamWriter, source: IOBase, info: RpcMethodInfo) -> None:
        super().__init__(writer)
        self._source = source
        self._info = info
        self._reader: ipc.RecordBatchStreamReader | None = None

    def recv(self) -> Any:
        if self._reader is None:
            self._reader = ipc.open_stream(self._source)
        return read_request(self._reader, self._info.name, self._info.request_type)


# ---------------------------------------------------------------------------
# Falcon application
# ---------------------------------------------------------------------------


class _HttpError(Exception):
    """Internal exception for protocol errors with an HTTP status."""

    __slots__ = ("cause", "status_code")

    def __init__(self, cause: BaseException, *, status_code: HTTPStatus) -> None:
        self.cause = cause
        self.status_code = status_code


def _check_content_type(req: falcon.Request) -> None:
    content_type = req.content_type or ""
    if content_type != ARROW_CONTENT_TYPE:
        raise _HttpError(
            TypeError(f"Expected Content-Type: '{ARROW_CONTENT_TYPE}', got {content_type!r}"),
            status_code=HTTPStatus.UNSUPPORTED_MEDIA_TYPE,
        )


def _emit_access_log(
    server: MockServer,
    info: RpcMethodInfo,
    duration_ms: float,
    status: Literal["ok", "error"],
    http_status: HTTPStatus,
    error_type: str = "",
    sent: int = 0,
) -> None:
    """Emit a structured access log record for a completed call."""
    if not _access_logger.isEnabledFor(logging.INFO):
        return
    extra: dict[str, object] = {
        "server_id": server.server_id,
        "method": info.name,
        "method_type": info.kind.value,
        "duration_ms": round(duration_ms, 2),
        "status": status,
        "error_type": error_type,
        "http_status": http_status.value,
        "responses": sent,
    }
    request_id = current_request_id.get()
    if request_id:
        extra["request_id"] = request_id
    _access_logger.info("%s %s", info.name, status, extra=extra)


class _RpcResource:
    """Falcon resource for every call: ``POST {prefix}/{method}``."""

    __slots__ = ("_server",)

    def __init__(self, server: MockServer) -> None:
        self._server = server

    def _resolve_method(self, req: falcon.Request, method: str) -> RpcMethodInfo:
        _check_content_type(req)
        info = self._server.methods.get(method)
        if info is None:
            available = sorted(self._server.methods)
            raise _HttpError(
                AttributeError(f"Unknown method: '{method}'. Available methods: {available}"),
                status_code=HTTPStatus.NOT_FOUND,
            )
        return info

    def on_post(self, req: falcon.Request, resp: falcon.Response, method: str) -> None:
        """Run one call and write the response stream."""
        resp.content_type = ARROW_CONTENT_TYPE
        try:
            info = self._resolve_method(req, method)
            resp.stream, status = self._dispatch(info, req.bounded_stream)
        except _HttpError as e:
            resp.stream, status = error_response_stream(e.cause, server_id=self._server.server_id), e.status_code
        resp.status = str(status.value)

    def _read_unary_request(self, info: RpcMethodInfo, source: IOBase) -> Any:
        try:
            with ipc.open_stream(source) as reader:
                request = read_request(reader, info.name, info.request_type)
                for _ in reader:
                    pass
        except _PROTOCOL_ERRORS as exc:
            raise _HttpError(exc, status_code=HTTPStatus.BAD_REQUEST) from exc
        return request

    def _dispatch(self, info: RpcMethodInfo, source: IOBase) -> tuple[BytesIO, HTTPStatus]:
        server = self._server
        request = None if info.kind is MethodKind.SUBSCRIBE else self._read_unary_request(info, source)
        handler = getattr(server, info.name)

        buf = BytesIO()
        start = time.monotonic()
        status = HTTPStatus.OK
        error: BaseException | None = None
        with ipc.new_stream(buf, MESSAGE_SCHEMA) as writer:
            stream: _IpcServerStream | None = None
            try:
                if info.kind is MethodKind.UNARY:
                    write_response(writer, handler(request))
                elif info.kind is MethodKind.SERVER_STREAM:
                    stream = _IpcServerStream(writer)
                    handler(request, stream)
                else:
                    stream = _IpcSubscribeStream(writer, source, info)
                    handler(stream)
            except HarnessError as exc:
                error, status = exc, HTTPStatus.INTERNAL_SERVER_ERROR
                server.record_violation(exc)
                _logger.critical(
                    "Harness violation in %s: %s",
                    info.name,
                    exc,
                    exc_info=True,
                    extra={"server_id": server.server_id, "method": info.name},
                )
                write_error_batch(writer, exc, server_id=server.server_id)
            except Exception as exc:
                error = exc
                if info.kind is MethodKind.UNARY:
                    status = HTTPStatus.INTERNAL_SERVER_ERROR
                _log_method_error(server, info, exc)
                write_error_batch(writer, exc, server_id=server.server_id)

        _emit_access_log(
            server,
            info,
            (time.monotonic() - start) * 1000,
            "ok" if error is None else "error",
            status,
            error_type=type(error).__name__ if error is not None else "",
            sent=stream.sent if stream is not None else int(error is None),
        )
        buf.seek(0)
        return buf, status


def _log_method_error(server: MockServer, info: RpcMethodInfo, exc: BaseException) -> None:
    """Log a handler error.

    Unmatched calls log at WARNING with the rendered diff, scripted errors at
    DEBUG, and anything else (including transport failures) at ERROR.
    """
    extra: dict[str, object] = {"server_id": server.server_id, "method": info.name, "error_type": type(exc).__name__}
    request_id = current_request_id.get()
    if request_id:
        extra["request_id"] = request_id
    if isinstance(exc, MatchError):
        _logger.warning("Unmatched %s call: %s", info.name, exc, extra=extra)
        return
    if isinstance(exc, StoreError):
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("%s returned %r", info.name, exc, extra=extra)
        return
    _logger.error("Error in %s: %s", info.name, exc, exc_info=True, extra=extra)


class _RequestIdMiddleware:
    """Falcon middleware that sets a per-request correlation ID.

    Reads ``X-Request-ID`` from the incoming request or generates a new
    16-char hex ID, sets it on the ``current_request_id`` contextvar and
    echoes it on the response.
    """

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Set request ID from header or generate one; populate contextvar."""
        request_id = req.get_header(_REQUEST_ID_HEADER) or uuid.uuid4().hex[:16]
        req.context.request_id = request_id
        req.context.request_id_token = current_request_id.set(request_id)

    def process_response(
        self,
        req: falcon.Request,
        resp: falcon.Response,
        resource: object,
        req_succeeded: bool,
    ) -> None:
        """Echo request ID on response header and reset contextvar."""
        request_id = getattr(req.context, "request_id", None)
        if request_id is not None:
            resp.set_header(_REQUEST_ID_HEADER, request_id)
        token = getattr(req.context, "request_id_token", None)
        if token is not None:
            current_request_id.reset(token)


def make_wsgi_app(server: MockServer, *, prefix: str = "/mockfs") -> falcon.App[falcon.Request, falcon.Response]:
    """Create a Falcon WSGI app that serves *server*'s RPC methods.

    Args:
        server: The server to dispatch calls to.
        prefix: URL prefix for the RPC routes.

    Raises:
        TypeError: If *server* lacks a handler for a service method.

    """
    validate_implementation(server, server.methods)
    app: falcon.App[falcon.Request, falcon.Response] = falcon.App(middleware=[_RequestIdMiddleware()])
    app.add_route(f"{prefix}/{{method}}", _RpcResource(server))
    _host_logger.debug("WSGI app created (server_id=%s, prefix=%s)", server.server_id, prefix)
    return app


# ---------------------------------------------------------------------------
# Process host
# ---------------------------------------------------------------------------


def _close_channels(listener: Any) -> None:
    """Close the listening socket and every open connection of a waitress server."""
    listener.close()
    for channel in list(listener._map.values()):
        channel.close()


class MockHost:
    """Owns the loopback listener serving a :class:`MockServer`.

    Args:
        server: The server whose handlers answer calls.
        config: Listener settings.

    """

    __slots__ = ("_lock", "_listener", "_thread", "config", "server")

    def __init__(self, server: MockServer, config: HostConfig | None = None) -> None:
        """Prepare a host; nothing listens until :meth:`start`."""
        self.server = server
        self.config = config if config is not None else HostConfig()
        self._lock = threading.Lock()
        self._listener: Any = None
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        """Whether the listener is accepting calls."""
        return self._listener is not None

    @property
    def address(self) -> str:
        """``host:port`` the listener is bound to.

        Raises:
            RuntimeError: If the host is not running.

        """
        listener = self._listener
        if listener is None:
            raise RuntimeError("MockHost is not running")
        return f"{self.config.host}:{listener.effective_port}"

    @property
    def url(self) -> str:
        """Base URL of the RPC routes, including the prefix."""
        return f"http://{self.address}{self.config.prefix}"

    def start(self) -> str:
        """Bind the listener, start serving, and return :attr:`address`.

        Calling ``start()`` on a running host returns its address.
        """
        with self._lock:
            if self._listener is None:
                app = make_wsgi_app(self.server, prefix=self.config.prefix)
                self._listener = waitress.create_server(
                    app,
                    host=self.config.host,
                    port=self.config.port,
                    threads=self.config.threads,
                )
                self._thread = threading.Thread(
                    target=self._listener.run, name=f"mockfs-host-{self.server.server_id}", daemon=True
                )
                self._thread.start()
                _host_logger.info(
                    "MockHost listening on %s:%d",
                    self.config.host,
                    self._listener.effective_port,
                    extra={"server_id": self.server.server_id},
                )
            return self.address

    def stop(self) -> None:
        """Stop accepting calls, close open connections and join the serving thread.

        Safe to call more than once or before :meth:`start`.
        """
        with self._lock:
            listener, thread = self._listener, self._thread
            self._listener = self._thread = None
        if listener is None:
            return
        # Sockets are closed on the loop thread itself; the loop exits once its map is empty
        listener.trigger.pull_trigger(lambda: _close_channels(listener))
        if thread is not None:
            thread.join(timeout=self.config.stop_timeout)
            if thread.is_alive():
                _host_logger.warning("MockHost serving thread did not exit within %.1fs", self.config.stop_timeout)
        listener.task_dispatcher.shutdown()
        _host_logger.info("MockHost stopped", extra={"server_id": self.server.server_id})

    def __enter__(self) -> MockHost:
        """Start the host."""
        self.start()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Stop the host."""
        self.stop()
