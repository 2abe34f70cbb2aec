"""FastAPI entrypoint for document pages, assets and the chat socket."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse, Response

from docrelay.chat.relay import TurnRelay
from docrelay.chat.session import ChatService
from docrelay.chat.upstream import AgentSource, ClaudeAgentSource
from docrelay.config import Settings
from docrelay.docs.access import AccessPolicy, can_access, extract_token
from docrelay.docs.render import render_document, render_listing, render_not_found
from docrelay.docs.resolver import DocumentResolver, is_safe_name
from docrelay.obs.tracing import TraceStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    agent_source: AgentSource | None = None,
) -> FastAPI:
    """Wire the document and chat services into one application."""

    settings = settings or Settings.from_env()
    policy = AccessPolicy(settings.docs.access_path, fail_open=settings.docs.access_fail_open)
    resolver = DocumentResolver(
        settings.docs.docs_dir,
        image_extensions=settings.docs.image_extensions,
    )
    trace_store = TraceStore()
    relay = TurnRelay(agent_source or ClaudeAgentSource(settings.agent), trace_store=trace_store)
    chat_service = ChatService(settings.chat, relay)
    cache_control = f"public, max-age={settings.docs.asset_max_age}"

    app = FastAPI(title="Doc Relay", version="0.1.0")
    app.state.settings = settings
    app.state.trace_store = trace_store
    app.state.chat_service = chat_service

    def _request_token(request: Request) -> str | None:
        return extract_token(
            request.query_params.get("token"),
            request.headers.get("authorization"),
        )

    @app.get("/-/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "chat_configured": settings.chat.enabled,
            "trace_count": len(trace_store),
        }

    @app.get("/-/metrics")
    def metrics() -> dict[str, Any]:
        return trace_store.summary()

    @app.get("/-/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        return {"items": [asdict(record) for record in trace_store.list_recent(limit=limit)]}

    @app.get("/-/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.websocket("/ws")
    async def chat_socket(websocket: WebSocket, session: str | None = None) -> None:
        await chat_service.serve(websocket, resume=session or None)

    @app.get("/", response_class=HTMLResponse)
    def index(request: Request) -> HTMLResponse:
        rules = policy.load()
        token = _request_token(request)
        entries = [
            entry
            for entry in resolver.list_documents()
            if can_access(entry.slug, token, rules)
        ]
        return HTMLResponse(render_listing(entries))

    @app.get("/{name:path}")
    def document(name: str, request: Request) -> Response:
        is_asset = resolver.is_asset_name(name)

        def _not_found() -> Response:
            # One body per resource kind, whatever the cause.
            if is_asset:
                return PlainTextResponse("Not found", status_code=404)
            return HTMLResponse(render_not_found(), status_code=404)

        if not is_safe_name(name):
            return _not_found()

        rules = policy.load()
        if not can_access(name, _request_token(request), rules):
            return PlainTextResponse("Unauthorized", status_code=401)

        if is_asset:
            asset = resolver.resolve_asset(name)
            if asset is None:
                return _not_found()
            return FileResponse(
                asset,
                media_type=resolver.content_type(asset),
                headers={"Cache-Control": cache_control},
            )

        path = resolver.resolve_document(name)
        if path is None:
            return _not_found()
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            logger.warning("Could not read document %s", name)
            return _not_found()
        return HTMLResponse(render_document(name, text))

    return app


app = create_app()
