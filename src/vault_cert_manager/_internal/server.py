"""HTTP status, rotation and metrics endpoints."""
import functools
import http.client as http_client
import http.server as BaseHTTPServer
import json
import logging
import socketserver
import threading
import traceback
import urllib.parse
from typing import Any
from typing import Optional
from typing import Protocol

from vault_cert_manager import errors
from vault_cert_manager._internal import constants
from vault_cert_manager._internal import metrics
from vault_cert_manager._internal.status import CertStatus

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = 'application/json'


class Controller(Protocol):
    """What the status endpoints need from the running application."""

    def statuses(self) -> list[CertStatus]:
        ...  # pragma: no cover

    def force_rotate(self, name: str) -> None:
        ...  # pragma: no cover

    def force_rotate_all(self) -> None:
        ...  # pragma: no cover

    def metrics(self) -> bytes:
        ...  # pragma: no cover


class HTTPServer(socketserver.ThreadingMixIn, BaseHTTPServer.HTTPServer):
    """Threaded HTTP server run on a background thread.

    Closing the server waits for the requests being handled.

    """
    daemon_threads = False
    block_on_close = True
    allow_reuse_address = True

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        """Port the server is bound to."""
        return self.socket.getsockname()[1]

    def start(self) -> None:
        """Run serve_forever on a new thread."""
        self.thread = threading.Thread(
            target=self.serve_forever, name=f'http-{self.port}', daemon=True)
        self.thread.start()
        logger.info('Listening for HTTP requests on port %d', self.port)

    def shutdown_and_server_close(self) -> None:
        """Wraps shutdown, server_close and threading.Thread.join"""
        if self.thread is not None:
            self.shutdown()
            self.thread.join()
            self.thread = None
        self.server_close()


class JSONRequestHandler(BaseHTTPServer.BaseHTTPRequestHandler):
    """Request handler answering with JSON documents."""

    def log_message(self, format: str, *args: Any) -> None:  # pylint: disable=redefined-builtin
        """Log arbitrary message."""
        logger.debug("%s - - %s", self.client_address[0], format % args)

    def request_path(self) -> list[str]:
        """Unquoted, non empty components of the request path."""
        path = urllib.parse.urlsplit(self.path).path
        return [urllib.parse.unquote(part) for part in path.split('/') if part]

    def read_body(self) -> bytes:
        """Read the request body, if any."""
        length = int(self.headers.get('Content-Length') or 0)
        return self.rfile.read(length) if length > 0 else b''

    def send_body(self, code: int, body: bytes, content_type: str) -> None:
        """Send a complete response."""
        self.send_response(code)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def send_json(self, code: int, jobj: Any) -> None:
        """Send jobj serialized as JSON."""
        self.send_body(code, json.dumps(jobj, indent=2).encode('utf-8'), JSON_CONTENT_TYPE)

    def send_error_json(self, code: int, message: str) -> None:
        """Send an ``{"error": message}`` document."""
        self.send_json(code, {'error': message})

    def handle_404(self) -> None:
        """Handler 404 Not Found errors."""
        self.send_error_json(http_client.NOT_FOUND, 'not found')

    def handle_405(self) -> None:
        """Handler 405 Method Not Allowed errors."""
        self.send_error_json(http_client.METHOD_NOT_ALLOWED, 'method not allowed')


class StatusRequestHandler(JSONRequestHandler):
    """Serves the API of a single certificate manager.

    - ``GET /api/status``: status of every managed certificate
    - ``POST /api/rotate/all``: force rotation of every certificate
    - ``POST /api/rotate/<name>``: force rotation of one certificate
    - ``GET /metrics``: Prometheus metrics

    """
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.controller: Controller = kwargs.pop('controller')
        super().__init__(*args, **kwargs)

    def do_GET(self) -> None:  # pylint: disable=invalid-name,missing-function-docstring
        parts = self.request_path()
        if parts == constants.PEER_STATUS_PATH.strip('/').split('/'):
            self.send_json(http_client.OK,
                           [status.to_json() for status in self.controller.statuses()])
        elif parts == ['metrics']:
            self.send_body(http_client.OK, self.controller.metrics(), metrics.CONTENT_TYPE)
        elif self._rotate_name(parts) is not None:
            self.handle_405()
        else:
            self.handle_404()

    def do_POST(self) -> None:  # pylint: disable=invalid-name,missing-function-docstring
        name = self._rotate_name(self.request_path())
        if name is None:
            self.handle_404()
            return
        self.read_body()
        try:
            if name == 'all':
                self.controller.force_rotate_all()
            else:
                self.controller.force_rotate(name)
        except errors.UnknownTargetError as error:
            self.send_error_json(http_client.NOT_FOUND, str(error))
        except Exception as error:  # pylint: disable=broad-except
            logger.error('Rotation of %s requested over HTTP failed: %s', name, error)
            logger.debug('Traceback was:\n%s', traceback.format_exc())
            self.send_error_json(http_client.INTERNAL_SERVER_ERROR, str(error))
        else:
            self.send_json(http_client.OK, {'status': 'ok', 'rotated': name})

    @staticmethod
    def _rotate_name(parts: list[str]) -> Optional[str]:
        prefix = constants.PEER_ROTATE_PATH.strip('/').split('/')
        if parts[:len(prefix)] != prefix or len(parts) > len(prefix) + 1:
            return None
        return parts[len(prefix)] if len(parts) > len(prefix) else 'all'

    @classmethod
    def partial_init(cls, controller: Controller) -> 'functools.partial[StatusRequestHandler]':
        """Partially initialize this handler.

        This is useful because `socketserver.BaseServer` takes
        uninitialized handler and initializes it with the current
        request.

        """
        return functools.partial(cls, controller=controller)


def make_status_server(controller: Controller, port: int, host: str = '') -> HTTPServer:
    """Bind the status API of controller to host:port."""
    return HTTPServer((host, port), StatusRequestHandler.partial_init(controller))
