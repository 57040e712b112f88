#!/usr/bin/env python3
"""Agent Webhook - HTTP surface for the coding-agent pipeline."""

import hmac
import os
import resource
import signal
import threading
import time
from datetime import datetime, timezone

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.serving import WSGIRequestHandler, make_server

from config.defaults import DEFAULTS
from config.settings import load_settings
from core.diagnostics import collect_status
from core.git import validate_branch_name
from core.lifecycle import ShutdownController, ShuttingDown
from core.orchestrator import Orchestrator
from core.state import PipelineRequest
from utils.logger import get_logger
from utils.project_paths import list_projects
from utils.text import redact, truncate

__version__ = "1.0.0"

log = get_logger(__name__)

app = Flask(__name__)
settings = load_settings()
orchestrator = Orchestrator(settings)
lifecycle = ShutdownController()
_started = time.monotonic()


def _now():
    return datetime.now(timezone.utc).isoformat()


def _clean(text):
    """Redact configured secrets, then bound the size."""
    return truncate(redact(text, settings.secrets()))


def _stage_to_dict(stage):
    data = {
        "stage": stage.stage,
        "success": stage.success,
        "skipped": stage.skipped,
        "timedOut": stage.timed_out,
        "output": _clean(stage.output),
    }
    if stage.error:
        data["error"] = _clean(stage.error)
    if stage.error_kind:
        data["errorKind"] = stage.error_kind
    if stage.reason:
        data["reason"] = stage.reason
    if stage.details:
        data["details"] = stage.details
    return data


def _result_to_dict(result):
    """Serialize PipelineResult to a JSON-safe dict."""
    data = {
        "success": result.success,
        "stages": [_stage_to_dict(s) for s in result.stages],
        "branch": result.branch,
        "workingCopyPath": result.working_copy_path,
    }
    if result.aborted:
        data["success"] = False
        data["error"] = _clean(result.error)
        data["errorKind"] = result.aborted
    return data


def _error(message, status):
    return jsonify({"success": False, "error": message}), status


def _authorized(payload):
    secret = settings.webhook_secret
    if not secret:
        return True
    supplied = payload.get("authSecret", payload.get("webhook_secret"))
    if not isinstance(supplied, str):
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), secret.encode("utf-8"))


@app.route("/")
def index():
    return jsonify({
        "status": "Agent webhook running",
        "version": __version__,
        "timestamp": _now(),
    })


@app.route("/health")
def health():
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return jsonify({
        "status": "healthy",
        "uptime": round(time.monotonic() - _started, 3),
        "memory": {"max_rss_kb": usage.ru_maxrss},
        "pid": os.getpid(),
        "inFlight": lifecycle.in_flight,
        "timestamp": _now(),
    })


@app.route("/status")
def status():
    return jsonify(collect_status(settings, orchestrator.agent.resolver))


@app.route("/projects")
def projects():
    items = list_projects(settings.projects_root)
    return jsonify({"projects": items, "total": len(items)})


@app.route("/execute", methods=["POST"])
@app.route("/execute-claude", methods=["POST"])
def execute():
    """Run the pipeline synchronously and report every stage."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _error("Request body must be a JSON object", 400)

    if not _authorized(payload):
        log.warning("Rejected /execute: bad secret from %s", request.remote_addr)
        return _error("Unauthorized", 401)

    try:
        pipeline_request = PipelineRequest.from_payload(payload)
    except ValueError as exc:
        return _error(str(exc), 400)
    if not pipeline_request.instruction:
        return _error("Missing required parameter: instruction", 400)

    try:
        validate_branch_name(pipeline_request.base_branch)
        validate_branch_name(pipeline_request.work_branch)
        orchestrator.project_path(pipeline_request)
    except ValueError as exc:
        return _error(str(exc), 400)

    try:
        with lifecycle.track() as cancel_event:
            result = orchestrator.run(pipeline_request, cancel_event=cancel_event)
    except ShuttingDown:
        return _error("Service is shutting down", 503)

    body = _result_to_dict(result)
    return jsonify(body), 500 if result.aborted else 200


@app.errorhandler(Exception)
def handle_error(exc):
    if isinstance(exc, HTTPException):
        return _error(exc.description, exc.code)
    log.exception("Unhandled error on %s", request.path)
    return _error("Internal server error", 500)


class _RequestHandler(WSGIRequestHandler):
    # Idle keep-alive connections give up after this long, so closing the
    # server never waits on a client that sends nothing.
    timeout = DEFAULTS["request_idle_timeout"]


def _make_http_server(host, port):
    """Threaded server whose request threads are joined by ``server_close()``."""
    http = make_server(host, port, app, threaded=True, request_handler=_RequestHandler)
    http.daemon_threads = False
    http.block_on_close = True
    return http


def _stop(http, worker, grace):
    """Stop accepting, drain runs, then wait until every request has been answered.

    Werkzeug's ``serve_forever`` closes the server itself on exit, joining the
    request threads in *worker*, so joining *worker* covers both paths.
    """
    http.shutdown()
    lifecycle.shutdown(grace)
    http.server_close()
    worker.join()


def serve(host=None, port=None):
    """Run the threaded server until SIGTERM/SIGINT, then drain in-flight runs.

    Order on shutdown: stop accepting connections, let the pipeline runs
    finish or cancel them after the grace period, then join the request
    threads so every response is written before the process exits.
    """
    host = host or settings.host
    port = port or settings.port
    http = _make_http_server(host, port)
    stop = threading.Event()

    def _on_signal(signum, frame):
        log.info("Received %s, shutting down", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGINT, _on_signal)

    worker = threading.Thread(target=http.serve_forever, name="http", daemon=True)
    worker.start()
    log.info("Agent webhook listening on http://%s:%s", host, port)

    while not stop.wait(0.5):
        pass

    _stop(http, worker, settings.shutdown_grace)
    log.info("Server stopped")


if __name__ == "__main__":
    serve()
