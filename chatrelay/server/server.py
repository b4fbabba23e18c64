"""HTTP + SSE gateway for the chat relay.

Hosts the agent event router behind a small REST API and streams chat
notifications to clients over Server-Sent Events. The upstream executor
posts raw agent events to ``/agent/events``; chat clients send, abort
and read history through ``/chat/*`` and listen on ``/events``.

Usage:
    chatrelay --server [--port PORT]
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from chatrelay.adapters.chat_router import AgentEventHandler
from chatrelay.adapters.event_bus import EventBus
from chatrelay.adapters.events import (
    CHAT_CHANNEL,
    ChatAborted,
    chat_event_to_dict,
)
from chatrelay.engine.config import GatewayConfig
from chatrelay.engine.errors import InvalidAgentEventError, SessionLookupError, format_error_for_log
from chatrelay.engine.models import AgentEvent, RunLink, SessionEntry
from chatrelay.engine.run_context import RunContextStore
from chatrelay.engine.run_state import ChatRunState
from chatrelay.engine.sequence import SequenceGuard
from chatrelay.engine.verbose import VerboseResolver, normalize_verbose_level
from chatrelay.shared.models.message import text_message
from chatrelay.shared.services.history import HistoryStore
from chatrelay.shared.services.sessions import SessionStore

logger = logging.getLogger(__name__)

# Signature: dispatch_run(context_id, session_key, client_run_id, message) -> None
RunDispatcher = Callable[[str, str, str, str], Awaitable[None]]
# Signature: cancel_run(context_id, client_run_id) -> None
RunCanceller = Callable[[str, str], Awaitable[None]]


def _serialize_session(entry: SessionEntry) -> dict[str, Any]:
    return {
        "sessionKey": entry.session_key,
        "sessionId": entry.session_id,
        "verboseLevel": entry.verbose_level,
        "thinkingLevel": entry.thinking_level,
        "updatedAt": entry.updated_at,
    }


class GatewayServer:
    """HTTP + SSE server wrapping the agent event router.

    Thin adapter: run bookkeeping lives in ``ChatRunState`` and friends.
    This class only handles HTTP routing, SSE fan-out and wiring.
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        sessions: dict[str, SessionEntry] | None = None,
        dispatch_run: RunDispatcher | None = None,
        cancel_run: RunCanceller | None = None,
    ) -> None:
        self._config = config or GatewayConfig()
        self._host = self._config.host
        self._port = self._config.port
        self._dispatch_run = dispatch_run
        self._cancel_run = cancel_run
        self._started_at = time.time()

        self.run_state = ChatRunState()
        self.sequence_guard = SequenceGuard()
        self.run_contexts = RunContextStore()
        self.sessions = SessionStore(sessions, verbose_default=self._config.verbose_default)
        self.history = HistoryStore(self._config.history_dir)
        self.bus = EventBus(maxsize=self._config.subscriber_queue_size)
        self.verbose = VerboseResolver(self.run_contexts, self.sessions.load_verbose)
        self.router = AgentEventHandler(
            broadcast=self.bus.broadcast,
            send_to_session=self.bus.send_to_session,
            run_state=self.run_state,
            sequence_guard=self.sequence_guard,
            resolve_session_key_for_run=self.run_contexts.resolve_session_key,
            clear_agent_run_context=self.run_contexts.clear,
            should_emit_tool_events=self.verbose.should_emit_tool_events,
        )
        # idempotency key -> (expires_at monotonic, cached response)
        self._dedupe: dict[str, tuple[float, dict[str, Any]]] = {}

        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._setup_routes()
        logger.info(
            "GatewayServer init host=%s port=%s history=%s sessions=%d pid=%s",
            self._host, self._port, self._config.history_dir or "<memory>",
            len(self.sessions), os.getpid(),
        )

    @property
    def app(self) -> web.Application:
        return self._app

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-chatrelay-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path_qs, req_id, elapsed_ms)
            raise

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_get("/events", self._handle_sse)
        # Executor ingest
        r.add_post("/agent/events", self._handle_agent_events)
        # Chat
        r.add_post("/chat/send", self._handle_chat_send)
        r.add_post("/chat/abort", self._handle_chat_abort)
        r.add_get("/chat/history", self._handle_chat_history)
        r.add_post("/chat/inject", self._handle_chat_inject)
        # Sessions
        r.add_get("/sessions/{key}", self._handle_get_session)
        r.add_patch("/sessions/{key}", self._handle_patch_session)
        # Admin
        r.add_post("/admin/reset", self._handle_reset)

    # ── Lifecycle ──

    async def start(self) -> None:
        """Start the server and print the port to stdout."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        actual_port = self._resolve_port(site, runner)
        if actual_port is None:
            raise RuntimeError("chatrelay server started but no listening socket was reported.")
        self._port = actual_port

        sys.stdout.write(json.dumps({"port": actual_port}) + "\n")
        sys.stdout.flush()
        logger.info("chatrelay server listening on %s:%d", self._host, actual_port)

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            self.bus.close()
            await runner.cleanup()

    @staticmethod
    def _resolve_port(site, runner) -> int | None:
        sockets = getattr(getattr(site, "_server", None), "sockets", None) or ()
        if sockets:
            return sockets[0].getsockname()[1]
        addresses = getattr(runner, "addresses", None) or ()
        if addresses:
            first = addresses[0]
            if isinstance(first, tuple) and len(first) >= 2:
                return int(first[1])
        return None

    # ── Helpers ──

    @staticmethod
    async def _read_body(request: web.Request) -> tuple[Any, web.Response | None]:
        """Return (body, None) or (None, 400 response)."""
        if not request.can_read_body:
            return {}, None
        try:
            return await request.json(), None
        except (json.JSONDecodeError, ValueError):
            return None, web.json_response({"error": "Invalid JSON body"}, status=400)

    @staticmethod
    def _require_str(body: dict[str, Any], key: str) -> str | None:
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def _purge_dedupe(self) -> None:
        now = time.monotonic()
        expired = [key for key, (expires_at, _) in self._dedupe.items() if expires_at <= now]
        for key in expired:
            del self._dedupe[key]

    def _emit_chat(self, payload: dict[str, Any]) -> None:
        self.bus.broadcast(CHAT_CHANNEL, payload)
        self.bus.send_to_session(payload["sessionKey"], CHAT_CHANNEL, payload)

    # ── HTTP handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "subscribers": len(self.bus),
            "pending_contexts": len(self.run_state.registry),
            "router": self.router.metrics.snapshot(),
            "bus": self.bus.metrics.snapshot(),
        })

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        session_key = request.query.get("sessionKey") or None
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Access-Control-Allow-Origin": "*",
            },
        )
        await response.prepare(request)

        sub = self.bus.subscribe(session_key)
        logger.info(
            "SSE client connected req=%s session=%s active_clients=%d",
            request.get("req_id", "unknown"), session_key or "<all>", len(self.bus),
        )
        try:
            await response.write(
                f"event: connected\ndata: {json.dumps({'sessionKey': session_key})}\n\n".encode()
            )
            async for msg in self.bus.consume(sub, keepalive=self._config.keepalive_seconds):
                if msg is None:
                    await response.write(b": keepalive\n\n")
                    continue
                data = json.dumps(msg["data"])
                await response.write(f"event: {msg['event']}\ndata: {data}\n\n".encode())
        except (asyncio.CancelledError, ConnectionResetError):
            pass
        finally:
            self.bus.unsubscribe(sub)
            logger.info(
                "SSE client disconnected req=%s reason=%s active_clients=%d",
                request.get("req_id", "unknown"), sub.close_reason or "client", len(self.bus),
            )
        return response

    async def _handle_agent_events(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        raw_events = body if isinstance(body, list) else [body]
        try:
            events = [AgentEvent.from_dict(raw) for raw in raw_events]
        except InvalidAgentEventError as exc:
            logger.warning("Rejected agent event batch: %s", exc.reason)
            return web.json_response({"error": str(exc)}, status=400)
        for evt in events:
            self.router.handle(evt)
        return web.json_response({"ok": True, "processed": len(events)})

    async def _handle_chat_send(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        if not isinstance(body, dict):
            return web.json_response({"error": "Body must be an object"}, status=400)
        session_key = self._require_str(body, "sessionKey")
        message = self._require_str(body, "message")
        if not session_key:
            return web.json_response({"error": "sessionKey is required"}, status=400)
        if not message:
            return web.json_response({"error": "message is required"}, status=400)
        client_run_id = self._require_str(body, "idempotencyKey") or str(uuid.uuid4())

        self._purge_dedupe()
        cached = self._dedupe.get(client_run_id)
        if cached is not None:
            logger.info("chat.send dedupe hit run=%s session=%s", client_run_id, session_key)
            return web.json_response(cached[1])

        try:
            entry = self.sessions.ensure(session_key)
        except SessionLookupError as exc:
            return web.json_response({"error": str(exc)}, status=400)
        context_id = entry.session_id or session_key

        # Persist first: a failed write must not leave a queued link behind.
        self.history.append(session_key, text_message("user", message))
        link = RunLink(session_key=session_key, client_run_id=client_run_id)
        self.run_state.registry.add(context_id, link)
        self.run_contexts.register(
            context_id,
            session_key=session_key,
            verbose_level=normalize_verbose_level(body.get("verboseLevel")),
            client_run_id=client_run_id,
        )

        if self._dispatch_run is not None:
            try:
                await self._dispatch_run(context_id, session_key, client_run_id, message)
            except Exception as exc:
                logger.warning(
                    "chat.send dispatch failed run=%s session=%s: %s",
                    client_run_id, session_key, exc, exc_info=True,
                )
                self.run_state.registry.remove(context_id, client_run_id, session_key)
                self.run_contexts.discard_client_run(context_id, client_run_id)
                if context_id not in self.run_state.registry:
                    self.run_contexts.clear(context_id)
                return web.json_response(
                    {"error": format_error_for_log(exc), "runId": client_run_id},
                    status=502,
                )

        self._dedupe[client_run_id] = (
            time.monotonic() + self._config.dedupe_ttl_seconds,
            {"runId": client_run_id, "status": "in_flight"},
        )
        logger.info(
            "chat.send accepted run=%s session=%s context=%s",
            client_run_id, session_key, context_id,
        )
        return web.json_response({"runId": client_run_id, "status": "started"})

    async def _handle_chat_abort(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        if not isinstance(body, dict):
            return web.json_response({"error": "Body must be an object"}, status=400)
        session_key = self._require_str(body, "sessionKey")
        if not session_key:
            return web.json_response({"error": "sessionKey is required"}, status=400)
        run_id = self._require_str(body, "runId")

        targets: list[tuple[str, str]] = [
            (context_id, link.client_run_id)
            for context_id, link in self.run_state.registry.links()
            if link.session_key == session_key
            and (run_id is None or link.client_run_id == run_id)
            and not self.run_state.is_aborted(link.client_run_id)
        ]
        for context_id, client_run_id in targets:
            self.run_state.mark_aborted(client_run_id)
            self.run_state.drop_progress(client_run_id)
            if self._cancel_run is not None:
                try:
                    await self._cancel_run(context_id, client_run_id)
                except Exception:
                    logger.warning(
                        "Cancel hook failed run=%s context=%s",
                        client_run_id, context_id, exc_info=True,
                    )
            self._emit_chat(chat_event_to_dict(ChatAborted(
                run_id=client_run_id,
                session_key=session_key,
                seq=self.sequence_guard.last(context_id),
            )))

        run_ids = [client_run_id for _, client_run_id in targets]
        logger.info("chat.abort session=%s runs=%s", session_key, run_ids or "<none>")
        return web.json_response({"ok": True, "aborted": bool(run_ids), "runIds": run_ids})

    async def _handle_chat_history(self, request: web.Request) -> web.Response:
        session_key = (request.query.get("sessionKey") or "").strip()
        if not session_key:
            return web.json_response({"error": "sessionKey is required"}, status=400)
        limit = self._config.history_limit
        limit_raw = request.query.get("limit")
        if limit_raw is not None:
            try:
                limit = int(limit_raw)
            except ValueError:
                return web.json_response({"error": "limit must be an integer"}, status=400)
            if limit <= 0:
                return web.json_response({"error": "limit must be > 0"}, status=400)
            limit = min(limit, self._config.history_limit)
        entry = self.sessions.get(session_key)
        return web.json_response({
            "sessionKey": session_key,
            "messages": self.history.load(session_key, limit),
            "thinkingLevel": entry.thinking_level if entry else None,
        })

    async def _handle_chat_inject(self, request: web.Request) -> web.Response:
        body, err = await self._read_body(request)
        if err:
            return err
        if not isinstance(body, dict):
            return web.json_response({"error": "Body must be an object"}, status=400)
        session_key = self._require_str(body, "sessionKey")
        message = body.get("message")
        if not session_key:
            return web.json_response({"error": "sessionKey is required"}, status=400)
        if not isinstance(message, dict) or not isinstance(message.get("role"), str):
            return web.json_response({"error": "message must be an object with a role"}, status=400)
        self.history.append(session_key, message)
        return web.json_response({"ok": True})

    async def _handle_get_session(self, request: web.Request) -> web.Response:
        session_key = request.match_info["key"]
        entry = self.sessions.get(session_key)
        if entry is None:
            return web.json_response({"error": f"Session {session_key} not found"}, status=404)
        return web.json_response(_serialize_session(entry))

    async def _handle_patch_session(self, request: web.Request) -> web.Response:
        session_key = request.match_info["key"]
        body, err = await self._read_body(request)
        if err:
            return err
        if not isinstance(body, dict):
            return web.json_response({"error": "Body must be an object"}, status=400)

        verbose_level: str | None = None
        if body.get("verboseLevel") is not None:
            verbose_level = normalize_verbose_level(body["verboseLevel"])
            if verbose_level is None:
                return web.json_response({"error": "verboseLevel must be on or off"}, status=400)
        thinking_raw = body.get("thinkingLevel")
        if thinking_raw is not None and not isinstance(thinking_raw, str):
            return web.json_response({"error": "thinkingLevel must be a string"}, status=400)

        try:
            entry = self.sessions.update(
                session_key,
                verbose_level=verbose_level,
                thinking_level=thinking_raw,
            )
        except SessionLookupError as exc:
            return web.json_response({"error": str(exc)}, status=400)
        return web.json_response(_serialize_session(entry))

    async def _handle_reset(self, request: web.Request) -> web.Response:
        self.reset()
        return web.json_response({"ok": True})

    def reset(self) -> None:
        """Wipe all run bookkeeping (hot restart). Sessions and history survive."""
        self.run_state.reset()
        self.sequence_guard.clear()
        self.run_contexts.reset()
        self._dedupe.clear()
        logger.info("Gateway run state reset")
