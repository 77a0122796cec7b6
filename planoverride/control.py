#!/usr/bin/env python3
"""Runtime control server for planoverride.

This module provides a lightweight HTTP API for runtime management:
- Engine status and statistics
- Listing the cached rule set
- Forced rule cache reload
- Configuration reload
- Dry-run rule resolution

The server runs in a separate thread and provides JSON endpoints.

Example:
    >>> from planoverride.control import ControlServer
    >>> server = ControlServer(engine, config_manager, port=8711)
    >>> server.start()
"""

import http.server
import json
import threading
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from planoverride.core.constants import PLANOVERRIDE_VERSION, ErrorCode, Limits
from planoverride.engine import OverrideEngine
from planoverride.infrastructure.config_manager import ConfigError, ConfigManager
from planoverride.infrastructure.logger import Logger


class ControlServerError(Exception):
    """Exception raised for control server errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INTERNAL_ERROR):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class ControlRequestHandler(http.server.BaseHTTPRequestHandler):
    """HTTP request handler for control server."""

    def log_message(self, format, *args):
        """Route access logs through our logger instead of stderr."""
        if hasattr(self.server, "logger"):
            self.server.logger.debug(format % args)

    def _send_json_response(self, data: Dict[str, Any], status: int = 200) -> None:
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(data, indent=2, default=str).encode("utf-8"))

    def _send_error_response(self, message: str, status: int = 400) -> None:
        self._send_json_response({"error": message, "success": False}, status)

    @property
    def engine(self) -> Optional[OverrideEngine]:
        return self.server.engine

    def do_GET(self):
        """Handle GET requests."""
        try:
            path = urlparse(self.path).path

            if path == "/":
                self._handle_root()
            elif path == "/status":
                self._handle_status()
            elif path == "/rules":
                self._handle_rules_list()
            elif path == "/cache/stats":
                self._handle_cache_stats()
            elif path == "/config":
                self._handle_config()
            else:
                self._send_error_response(f"Unknown endpoint: {path}", 404)

        except Exception as e:
            self.server.logger.error("Error handling GET request", path=self.path, error=e)
            self._send_error_response(str(e), 500)

    def do_POST(self):
        """Handle POST requests."""
        try:
            path = urlparse(self.path).path

            content_length = int(self.headers.get("Content-Length", 0))
            body = self.rfile.read(content_length) if content_length > 0 else b"{}"

            try:
                data = json.loads(body.decode("utf-8"))
            except json.JSONDecodeError:
                self._send_error_response("Invalid JSON in request body")
                return

            if not isinstance(data, dict):
                self._send_error_response("Request body must be a JSON object")
                return

            if path == "/cache/refresh":
                self._handle_cache_refresh(data)
            elif path == "/cache/invalidate":
                self._handle_cache_invalidate(data)
            elif path == "/cache/clear":
                self._handle_cache_clear(data)
            elif path == "/config/reload":
                self._handle_config_reload(data)
            elif path == "/resolve":
                self._handle_resolve(data)
            else:
                self._send_error_response(f"Unknown endpoint: {path}", 404)

        except Exception as e:
            self.server.logger.error("Error handling POST request", path=self.path, error=e)
            self._send_error_response(str(e), 500)

    # =========================================================================
    # GET Handlers
    # =========================================================================

    def _handle_root(self):
        endpoints = {
            "GET": {
                "/": "Show this help",
                "/status": "Get engine status and counters",
                "/rules": "List cached rules in match order",
                "/cache/stats": "Get rule cache statistics",
                "/config": "Get merged configuration",
            },
            "POST": {
                "/cache/refresh": "Reload rules from the store now",
                "/cache/invalidate": "Mark the rule cache stale",
                "/cache/clear": "Drop cached rules and mark the cache stale",
                "/config/reload": "Reload configuration files",
                "/resolve": "Show which rule a request would use",
            },
        }

        self._send_json_response({"endpoints": endpoints, "version": PLANOVERRIDE_VERSION})

    def _handle_status(self):
        if not self.engine:
            self._send_error_response("Engine not available", 503)
            return

        self._send_json_response({"running": True, **self.engine.get_stats()})

    def _handle_rules_list(self):
        if not self.engine:
            self._send_error_response("Engine not available", 503)
            return

        rules = [rule.to_record() for rule in self.engine.cache.rules]
        self._send_json_response({"rules": rules, "rule_count": len(rules), "success": True})

    def _handle_cache_stats(self):
        if not self.engine:
            self._send_error_response("Engine not available", 503)
            return

        self._send_json_response(self.engine.cache.get_stats())

    def _handle_config(self):
        config_manager = self.server.config_manager

        if not config_manager:
            self._send_error_response("Configuration not available", 503)
            return

        self._send_json_response({"config": config_manager.get_all()})

    # =========================================================================
    # POST Handlers
    # =========================================================================

    def _handle_cache_refresh(self, data: Dict):
        if not self.engine:
            self._send_error_response("Engine not available", 503)
            return

        refreshed = self.engine.refresh_cache()
        if not refreshed:
            self._send_error_response("Rule refresh already in progress", 409)
            return

        self._send_json_response(
            {
                "success": True,
                "message": "Rule cache reloaded",
                "rule_count": len(self.engine.cache.rules),
            }
        )

    def _handle_cache_invalidate(self, data: Dict):
        if not self.engine:
            self._send_error_response("Engine not available", 503)
            return

        self.engine.cache.invalidate()
        self._send_json_response({"success": True, "message": "Rule cache marked stale"})

    def _handle_cache_clear(self, data: Dict):
        if not self.engine:
            self._send_error_response("Engine not available", 503)
            return

        self.engine.cache.clear()
        self._send_json_response({"success": True, "message": "Rule cache cleared"})

    def _handle_config_reload(self, data: Dict):
        config_manager = self.server.config_manager

        if not config_manager:
            self._send_error_response("Configuration manager not available", 503)
            return

        try:
            config_manager.reload()
        except ConfigError as e:
            self._send_error_response(f"Failed to reload configuration: {e}", 500)
            return

        self._send_json_response({"success": True, "message": "Configuration reloaded"})

    def _handle_resolve(self, data: Dict):
        if not self.engine:
            self._send_error_response("Engine not available", 503)
            return

        identity_key = data.get("identity_key")
        text = data.get("text")

        if identity_key is not None and (isinstance(identity_key, bool) or not isinstance(identity_key, int)):
            self._send_error_response("'identity_key' must be an integer")
            return
        if text is not None and not isinstance(text, str):
            self._send_error_response("'text' must be a string")
            return

        result = self.engine.matcher.explain(identity_key, text)
        self._send_json_response(
            {
                "matched": result.matched,
                "kind": result.kind.value,
                "position": result.position,
                "rule": result.rule.to_record() if result.rule else None,
            }
        )


class ControlServer:
    """
    HTTP control server for runtime management.

    Provides REST API endpoints for:
    - Status monitoring
    - Rule listing and dry-run resolution
    - Rule cache reload
    - Configuration reload
    """

    def __init__(
        self,
        engine: Optional[OverrideEngine] = None,
        config_manager: Optional[ConfigManager] = None,
        host: str = "127.0.0.1",
        port: int = Limits.DEFAULT_CONTROL_PORT,
        logger: Optional[Logger] = None,
    ):
        """
        Initialize control server.

        Args:
            engine: Engine to manage
            config_manager: Configuration manager instance
            host: Server host address
            port: Server port number (0 picks a free port)
            logger: Logger for request errors
        """
        self.engine = engine
        self.config_manager = config_manager
        self.host = host
        self.port = port
        self.logger = logger or Logger("planoverride.control", level="INFO")

        self.server: Optional[http.server.HTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self.running = False

    def start(self) -> None:
        """
        Start control server in background thread.

        Raises:
            ControlServerError: If server fails to start
        """
        if self.running:
            self.logger.warning("Control server already running")
            return

        try:
            self.server = http.server.ThreadingHTTPServer((self.host, self.port), ControlRequestHandler)
        except OSError as e:
            raise ControlServerError(f"Failed to start control server: {e}")

        # Handlers reach our objects through the server instance
        self.server.engine = self.engine
        self.server.config_manager = self.config_manager
        self.server.logger = self.logger
        self.port = self.server.server_address[1]

        self.server_thread = threading.Thread(
            target=self._run_server, daemon=True, name="ControlServer"
        )
        self.server_thread.start()

        self.running = True
        self.logger.info("Control server started", host=self.host, port=self.port)

    def _run_server(self) -> None:
        """Run server loop (called in background thread)."""
        try:
            self.server.serve_forever()
        except Exception as e:
            self.logger.error("Control server error", error=e)
            self.running = False

    def stop(self) -> None:
        """Stop control server."""
        if not self.running:
            return

        self.logger.info("Stopping control server")

        if self.server:
            self.server.shutdown()
            self.server.server_close()

        if self.server_thread:
            self.server_thread.join(timeout=5.0)

        self.running = False
        self.logger.info("Control server stopped")

    def get_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def is_running(self) -> bool:
        return self.running
