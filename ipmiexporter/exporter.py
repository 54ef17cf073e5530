"""HTTP exporter: runs the configured collectors per scrape and serves metrics."""

from __future__ import annotations

import argparse
import json
import logging
import posixpath
import signal
import sys
import threading
import time
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Mapping, NamedTuple, Sequence
from urllib.parse import parse_qs, urlsplit

from .config import ConfigError, ModuleConfig, SafeConfig
from .freeipmi import Result, execute
from .metrics import (
    DURATION_DESC,
    TARGET_LOCAL,
    UP_DESC,
    Collector,
    Metric,
    Target,
    gauge,
    render,
    target_name,
)

log = logging.getLogger(__name__)

Runner = Callable[[str, Sequence[str], str, str], Result]

METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"

INDEX_PAGE = """<html>
            <head>
            <title>IPMI Exporter</title>
            <style>
            label{
            display:inline-block;
            width:75px;
            }
            form label {
            margin: 10px;
            }
            form input {
            margin: 10px;
            }
            </style>
            </head>
            <body>
            <h1>IPMI Exporter</h1>
            <form action="/ipmi">
            <label>Target:</label> <input type="text" name="target" placeholder="X.X.X.X" value="1.2.3.4"><br>
            <input type="submit" value="Submit">
            </form>
            <p><a href="/metrics">Local metrics</a></p>
            <p><a href="/config">Config</a></p>
            </body>
            </html>"""

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class _Response(NamedTuple):
    status: int
    headers: dict[str, str]
    body: bytes


def _error(status: int, message: str, **headers: str) -> _Response:
    return _Response(status, {"Content-Type": TEXT_CONTENT_TYPE, **headers}, (message + "\n").encode())


@dataclass
class MetaCollector:
    """Runs every collector of a target's module and reports their results."""

    target: str
    module: str
    config: SafeConfig
    executables_path: str = ""
    runner: Runner = execute

    def collect(self) -> list[Metric]:
        """Scrape the target once; each collector adds an ``ipmi_up`` sample."""
        start = time.perf_counter()
        module_config = self.config.config_for_target(self.target, self.module)
        target = Target(self.target, module_config)
        metrics: list[Metric] = []
        try:
            for collector in module_config.get_collectors():
                metrics += self._run(collector, target, module_config)
        finally:
            duration = time.perf_counter() - start
            log.debug("Scrape duration (target %s): %s", target_name(self.target), duration)
            metrics.append(gauge(DURATION_DESC, duration))
        return metrics

    def _run(self, collector: Collector, target: Target, module_config: ModuleConfig) -> list[Metric]:
        name = str(collector.name)
        log.debug("Running collector %s (target %s)", name, target.host)
        result = Result()
        cmd = collector.cmd
        if cmd:
            if not posixpath.isabs(cmd):
                cmd = posixpath.join(self.executables_path, cmd)
            result = self.runner(cmd, list(collector.args), module_config.freeipmi_config(), target.host)
        try:
            found = collector.collect(result, target)
            up = 1
        except Exception as exc:  # a failing collector must not break the scrape
            log.error("Collector %s failed: %s", name, exc)
            found, up = [], 0
        return [*found, gauge(UP_DESC, up, name)]


class ExporterApp:
    """Request routing for the exporter's HTTP endpoints."""

    def __init__(
        self,
        config: SafeConfig | None = None,
        config_file: str = "",
        executables_path: str = "",
        runner: Runner = execute,
    ) -> None:
        self.config = config if config is not None else SafeConfig()
        self.config_file = config_file
        self.executables_path = executables_path
        self.runner = runner
        self._reload_lock = threading.Lock()

    def reload(self) -> None:
        """Reload the configuration file; on error the old config is kept."""
        with self._reload_lock:
            self.config.reload(self.config_file)

    def handle(self, method: str, path: str, query: Mapping[str, str]) -> _Response:
        """Answer one request with its status, headers and body."""
        if path == "/metrics":
            return self._scrape(TARGET_LOCAL, "default")
        if path == "/ipmi":
            return self._remote(query)
        if path == "/-/reload":
            return self._reload(method, path)
        return _Response(200, {"Content-Type": HTML_CONTENT_TYPE}, INDEX_PAGE.encode())

    def _scrape(self, target: str, module: str) -> _Response:
        collector = MetaCollector(target, module, self.config, self.executables_path, self.runner)
        body = render(collector.collect()).encode()
        return _Response(200, {"Content-Type": METRICS_CONTENT_TYPE}, body)

    def _remote(self, query: Mapping[str, str]) -> _Response:
        target = query.get("target", "")
        if not target:
            return _error(400, "'target' parameter must be specified")
        # A remote scrape will not work without some config, so be strict.
        module = query.get("module", "") or "default"
        if not self.config.has_module(module):
            return _error(400, f"Unknown module {json.dumps(module, ensure_ascii=False)}")
        log.debug("Scraping target %s with module %s", target, module)
        return self._scrape(target, module)

    def _reload(self, method: str, path: str) -> _Response:
        if method != "POST":
            log.error("Only POST requests allowed (url %s)", path)
            return _error(405, "Only POST requests allowed", Allow="POST")
        try:
            self.reload()
        except (OSError, ConfigError) as exc:
            log.error("Error reloading config: %s", exc)
            return _error(500, f"failed to reload config: {exc}")
        return _Response(200, {}, b"")


def _parse_address(address: str | tuple[str, int]) -> tuple[str, int]:
    if isinstance(address, tuple):
        return address
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address: {address!r}")
    return host.strip("[]"), int(port)


def create_server(address: str | tuple[str, int], app: ExporterApp) -> ThreadingHTTPServer:
    """An HTTP server on ``address`` (e.g. ``":9290"``) that serves ``app``."""

    class _Handler(BaseHTTPRequestHandler):
        def _dispatch(self) -> None:
            length = int(self.headers.get("Content-Length") or 0)
            if length:
                self.rfile.read(length)
            url = urlsplit(self.path)
            query = {
                key: values[0]
                for key, values in parse_qs(url.query, keep_blank_values=True).items()
            }
            response = app.handle(self.command, url.path, query)
            self.send_response(response.status)
            for key, value in response.headers.items():
                self.send_header(key, value)
            self.send_header("Content-Length", str(len(response.body)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(response.body)

        do_GET = do_POST = do_PUT = do_DELETE = do_HEAD = _dispatch

        def log_message(self, format: str, *args: object) -> None:
            log.debug("%s - %s", self.address_string(), format % args)

    return ThreadingHTTPServer(_parse_address(address), _Handler)


def _reload_logged(app: ExporterApp) -> None:
    try:
        app.reload()
    except (OSError, ConfigError) as exc:
        log.error("Error reloading config: %s", exc)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the exporter until interrupted; returns the exit status."""
    parser = argparse.ArgumentParser(prog="ipmi_exporter", description="Prometheus IPMI exporter.")
    parser.add_argument("--config.file", dest="config_file", default="", help="Path to configuration file.")
    parser.add_argument(
        "--freeipmi.path",
        dest="freeipmi_path",
        default="",
        help="Path to FreeIPMI executables (default: rely on $PATH).",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9290",
        help="Address on which to expose metrics.",
    )
    parser.add_argument("--log.level", dest="log_level", choices=sorted(_LOG_LEVELS), default="info")
    options = parser.parse_args(argv)

    logging.basicConfig(
        level=_LOG_LEVELS[options.log_level],
        format="%(asctime)s level=%(levelname)s source=%(name)s msg=%(message)s",
    )
    log.info("Starting ipmi_exporter")

    app = ExporterApp(config_file=options.config_file, executables_path=options.freeipmi_path)
    try:
        app.reload()
    except (OSError, ConfigError) as exc:
        log.error("Error parsing config file: %s", exc)
        return 1

    if hasattr(signal, "SIGHUP"):
        signal.signal(
            signal.SIGHUP,
            lambda *_: threading.Thread(target=_reload_logged, args=(app,), daemon=True).start(),
        )

    try:
        server = create_server(options.listen_address, app)
    except (OSError, ValueError) as exc:
        log.error("HTTP listener stopped: %s", exc)
        return 1
    log.info("Listening on %s", options.listen_address)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
    return 0


if __name__ == "__main__":
    sys.exit(main())