"""Health check and metrics endpoints for the operator."""

from __future__ import annotations

import threading
from typing import Any, Callable

from prometheus_client import make_wsgi_app
from werkzeug.serving import make_server
from werkzeug.wrappers import Response


def create_combined_wsgi_app(ready_check: Callable[[], bool] | None = None) -> Any:
    """Create a WSGI app that combines metrics and health check endpoints.

    Args:
        ready_check: Optional callable deciding whether /readyz reports ready

    Returns:
        Combined WSGI application
    """
    metrics_app = make_wsgi_app()

    def combined_app(environ: dict[str, Any], start_response: Any) -> list[bytes]:
        """WSGI app that routes /healthz and /readyz, delegates /metrics to prometheus."""
        path = environ.get("PATH_INFO", "")

        if path == "/healthz":
            response = Response('{"status":"ok"}', mimetype="application/json", status=200)
            return response(environ, start_response)
        elif path == "/readyz":
            if ready_check is None or ready_check():
                response = Response('{"status":"ready"}', mimetype="application/json", status=200)
            else:
                response = Response('{"status":"not ready"}', mimetype="application/json", status=503)
            return response(environ, start_response)
        else:
            return metrics_app(environ, start_response)

    return combined_app


def start_metrics_server(port: int, app: Any) -> Any:
    """Serve the combined app from a daemon thread and return the server."""
    server = make_server("", port, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server
