"""
selection_server.py — HTTP surface for the image selector.

Runs as an aiohttp web server in the main asyncio event loop.

Endpoints:
  POST /selection  → run the selection pipeline on a JSON batch
  GET  /health     → plain-text health check (for uptime monitors / nginx)
  GET  /stats      → JSON summary of past selection runs

Status codes for POST /selection:
  200  report (partial failures are listed under "diagnostics")
  400  {"error": "..."} for a malformed request
  500  {"error": "internal error"} for anything unexpected (logged with traceback)
"""
from __future__ import annotations

import json
import logging
from typing import Optional

from aiohttp import web

import config
import database as db
from classifier import ContentClassifier
from models import InputError
from pipeline import parse_request, run_selection

logger = logging.getLogger(__name__)

# Injected classifier; None → each request builds one from config
CLASSIFIER_KEY = web.AppKey("classifier", ContentClassifier)


# ── Request handlers ───────────────────────────────────────────────────────────

async def handle_selection(request: web.Request) -> web.Response:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response({"error": "Request body must be valid JSON"}, status=400)

    try:
        selection = parse_request(body)
    except InputError as exc:
        logger.info("Rejected /selection request: %s", exc)
        return web.json_response({"error": str(exc)}, status=400)

    try:
        report = await run_selection(selection, request.app.get(CLASSIFIER_KEY))
    except InputError as exc:
        return web.json_response({"error": str(exc)}, status=400)
    except Exception:
        logger.exception("Selection failed for a batch of %d image(s)", len(selection.images))
        return web.json_response({"error": "internal error"}, status=500)

    return web.json_response(report.to_dict())


async def handle_health(request: web.Request) -> web.Response:
    """Health check — returns 200 OK. Use with uptime monitors."""
    return web.Response(text="OK", content_type="text/plain")


async def handle_stats(request: web.Request) -> web.Response:
    """Return JSON stats over all logged selection runs."""
    try:
        stats = await db.get_selection_stats()
    except Exception as exc:
        logger.warning("Stats unavailable: %s", exc)
        return web.json_response({"error": "stats unavailable"}, status=503)
    return web.json_response(stats)


# ── App factory ────────────────────────────────────────────────────────────────

def build_web_app(classifier: Optional[ContentClassifier] = None) -> web.Application:
    app = web.Application(client_max_size=4 * 1024 * 1024)
    app[CLASSIFIER_KEY] = classifier
    app.router.add_post("/selection", handle_selection)
    app.router.add_get("/health",     handle_health)
    app.router.add_get("/stats",      handle_stats)
    return app


async def start_server(classifier: Optional[ContentClassifier] = None) -> web.AppRunner:
    """Start the web server. Returns runner so caller can shut it down cleanly."""
    app    = build_web_app(classifier)
    runner = web.AppRunner(app, access_log=logger)
    await runner.setup()
    site = web.TCPSite(runner, config.SERVER_HOST, config.SERVER_PORT)
    await site.start()
    logger.info("Image selector listening on %s:%d", config.SERVER_HOST, config.SERVER_PORT)
    return runner
