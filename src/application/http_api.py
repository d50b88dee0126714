"""
HTTP and WebSocket surface (aiohttp).

Thin request/response plumbing around the engine: strategy registration,
the pull-based signal listing used for catch-up after a missed push,
sample ingest, formula validation and the delivery channel at ``/ws``.

Routes:
    GET  /ws                                     delivery channel
    GET  /health
    GET  /api/conditions
    GET  /api/instruments
    GET  /api/signals?limit=&instrumentId=&strategyId=
    POST /api/signals/{signal_id}/dismiss
    GET  /api/strategies
    POST /api/strategies
    POST /api/strategies/{strategy_id}/disable
    POST /api/strategies/{strategy_id}/enable
    POST /api/formulas/validate
    POST /api/ingest/{instrument_id}/{timeframe}
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from aiohttp import web

from src.domain.exceptions import CompileError, FeedGapError, StoreError, StrategyNotFoundError
from src.domain.interfaces.signal_store import SignalStorePort
from src.domain.signals.conditions import list_catalog
from src.domain.signals.models import TIMEFRAME_SECONDS, Sample, Strategy
from src.domain.signals.pipeline import SignalPipeline
from src.infrastructure.delivery import SignalBroadcaster
from src.utils.logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_SIGNAL_LIMIT = 100
MAX_SIGNAL_LIMIT = 1000


def _error(status: int, message: str, **details: Any) -> web.Response:
    return web.json_response({"error": message, **details}, status=status)


async def _read_json(request: web.Request) -> Dict[str, Any]:
    """Request body as a JSON object; raises HTTPBadRequest otherwise."""
    try:
        body = await request.json()
    except ValueError as e:
        raise web.HTTPBadRequest(text=f"Invalid JSON body: {e}") from e
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body


class SignalApi:
    """Request handlers bound to one engine instance."""

    def __init__(
        self,
        pipeline: SignalPipeline,
        broadcaster: SignalBroadcaster,
        store: Optional[SignalStorePort] = None,
    ) -> None:
        self._pipeline = pipeline
        self._broadcaster = broadcaster
        self._store = store

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "engine": self._pipeline.stats(),
                "delivery": self._broadcaster.stats(),
            }
        )

    async def list_conditions(self, request: web.Request) -> web.Response:
        return web.json_response(list_catalog())

    async def list_instruments(self, request: web.Request) -> web.Response:
        instruments = sorted(self._pipeline.instruments.get_all(), key=lambda i: i.id)
        return web.json_response([i.to_dict() for i in instruments])

    # Signals

    async def list_signals(self, request: web.Request) -> web.Response:
        if self._store is None:
            return web.json_response([])
        try:
            limit = int(request.query.get("limit", DEFAULT_SIGNAL_LIMIT))
        except ValueError:
            return _error(400, "limit must be an integer")
        limit = max(1, min(limit, MAX_SIGNAL_LIMIT))

        try:
            signals = await self._store.list_recent(
                limit=limit,
                instrument_id=request.query.get("instrumentId"),
                strategy_id=request.query.get("strategyId"),
            )
        except StoreError as e:
            logger.error(f"Listing signals failed: {e}")
            return _error(503, "Signal store unavailable")
        return web.json_response([s.to_dict() for s in signals])

    async def dismiss_signal(self, request: web.Request) -> web.Response:
        if self._store is None:
            return _error(404, "Signal not found")
        signal_id = request.match_info["signal_id"]
        try:
            found = await self._store.dismiss(signal_id)
        except StoreError as e:
            logger.error(f"Dismissing signal {signal_id} failed: {e}")
            return _error(503, "Signal store unavailable")
        if not found:
            return _error(404, "Signal not found")
        return web.json_response({"id": signal_id, "dismissed": True})

    # Strategies

    async def list_strategies(self, request: web.Request) -> web.Response:
        return web.json_response([s.to_dict() for s in self._pipeline.list_strategies()])

    async def create_strategy(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        try:
            strategy = Strategy.from_dict(body)
        except (KeyError, ValueError) as e:
            return _error(400, f"Invalid strategy: {e}")

        try:
            self._pipeline.register_strategy(strategy)
        except CompileError as e:
            logger.info(f"Rejected strategy {strategy.id}: {e}")
            return _error(400, str(e), reason=e.reason, position=e.position)

        payload = strategy.to_dict()
        payload["compiledFormula"] = self._pipeline.registry.require(strategy.id).predicate.formula
        return web.json_response(payload, status=201)

    async def disable_strategy(self, request: web.Request) -> web.Response:
        return self._set_enabled(request.match_info["strategy_id"], False)

    async def enable_strategy(self, request: web.Request) -> web.Response:
        return self._set_enabled(request.match_info["strategy_id"], True)

    def _set_enabled(self, strategy_id: str, enabled: bool) -> web.Response:
        try:
            if enabled:
                strategy = self._pipeline.enable_strategy(strategy_id)
            else:
                strategy = self._pipeline.disable_strategy(strategy_id)
        except StrategyNotFoundError as e:
            return _error(404, str(e))
        return web.json_response(strategy.to_dict())

    async def validate_formula(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        formula = body.get("formula")
        if not isinstance(formula, str):
            return _error(400, "formula must be a string")
        result = self._pipeline.compiler.validate(formula)
        return web.json_response(result.to_dict())

    # Ingest

    async def ingest(self, request: web.Request) -> web.Response:
        instrument_id = request.match_info["instrument_id"]
        timeframe = request.match_info["timeframe"]
        if timeframe not in TIMEFRAME_SECONDS:
            return _error(400, f"Unsupported timeframe {timeframe!r}")

        body = await _read_json(request)
        try:
            sample = Sample.from_dict(body, instrument_id=instrument_id, timeframe=timeframe)
        except ValueError as e:
            return _error(400, str(e))

        try:
            signals = await self._pipeline.ingest(instrument_id, timeframe, sample)
        except FeedGapError as e:
            return _error(409, str(e), lastTimestamp=str(e.last_timestamp))
        return web.json_response({"signals": [s.to_dict() for s in signals]})


def create_app(
    pipeline: SignalPipeline,
    broadcaster: SignalBroadcaster,
    store: Optional[SignalStorePort] = None,
    websocket_path: str = "/ws",
) -> web.Application:
    """Build the aiohttp application with every route registered."""
    api = SignalApi(pipeline, broadcaster, store)
    app = web.Application()
    app.add_routes(
        [
            web.get(websocket_path, broadcaster.handle),
            web.get("/health", api.health),
            web.get("/api/conditions", api.list_conditions),
            web.get("/api/instruments", api.list_instruments),
            web.get("/api/signals", api.list_signals),
            web.post("/api/signals/{signal_id}/dismiss", api.dismiss_signal),
            web.get("/api/strategies", api.list_strategies),
            web.post("/api/strategies", api.create_strategy),
            web.post("/api/strategies/{strategy_id}/disable", api.disable_strategy),
            web.post("/api/strategies/{strategy_id}/enable", api.enable_strategy),
            web.post("/api/formulas/validate", api.validate_formula),
            web.post("/api/ingest/{instrument_id}/{timeframe}", api.ingest),
        ]
    )

    async def _close_connections(app: web.Application) -> None:
        await broadcaster.close_all()

    app.on_shutdown.append(_close_connections)
    return app
