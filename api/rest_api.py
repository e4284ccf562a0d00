"""
REST API for the Daily Bar Consolidator.

This module provides FastAPI endpoints for feeding observations, probing the
consolidator with the current time, and inspecting consolidated bars.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from consolidation.models import Bar, QuoteBar, TradeBar
from consolidation.service import ConsolidationService

logger = logging.getLogger(__name__)


# Request models
class BarModel(BaseModel):
    """One side of a quote."""
    open: float
    high: float
    low: float
    close: float

    def to_bar(self) -> Bar:
        return Bar(self.open, self.high, self.low, self.close)


class QuoteBarRequest(BaseModel):
    """Request model for a quote bar observation (exchange local times)."""
    symbol: str
    time: datetime
    end_time: Optional[datetime] = None
    bid: Optional[BarModel] = None
    ask: Optional[BarModel] = None
    last_bid_size: float = 0.0
    last_ask_size: float = 0.0
    value: float = 0.0
    period_seconds: Optional[float] = Field(default=None, ge=0)

    def to_quote_bar(self) -> QuoteBar:
        return QuoteBar(
            symbol=self.symbol.upper(),
            time=_naive(self.time),
            end_time=_naive(self.end_time) if self.end_time else None,
            bid=self.bid.to_bar() if self.bid else None,
            ask=self.ask.to_bar() if self.ask else None,
            last_bid_size=self.last_bid_size,
            last_ask_size=self.last_ask_size,
            value=self.value,
            period=timedelta(seconds=self.period_seconds or 0)
        )


class TradeBarRequest(BaseModel):
    """Request model for a trade bar observation (exchange local times)."""
    symbol: str
    time: datetime
    end_time: Optional[datetime] = None
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    period_seconds: Optional[float] = Field(default=None, ge=0)

    def to_trade_bar(self) -> TradeBar:
        return TradeBar(
            symbol=self.symbol.upper(),
            time=_naive(self.time),
            end_time=_naive(self.end_time) if self.end_time else None,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            volume=self.volume,
            period=timedelta(seconds=self.period_seconds or 0)
        )


class ScanRequest(BaseModel):
    """Request model for a time scan; defaults to the exchange wall clock."""
    current_time: Optional[datetime] = None


def _naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        raise ValueError("Timestamps must be naive exchange local times")
    return value


def _bar_to_dict(bar) -> Optional[Dict[str, Any]]:
    return bar.to_dict() if bar is not None else None


def create_app(service: ConsolidationService) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: Consolidation service backing the endpoints

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Daily Bar Consolidator API",
        description="API for feeding and inspecting zoned daily bar consolidation",
        version="1.0.0"
    )

    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _ingest(request: Request, data) -> Dict[str, Any]:
        svc: ConsolidationService = request.app.state.service
        if not isinstance(data, svc.consolidator.input_type):
            raise HTTPException(
                status_code=400,
                detail=f"Consolidator expects {svc.consolidator.input_type.__name__} observations"
            )
        return {"consolidated": _bar_to_dict(svc.process(data))}

    @app.get("/health", tags=["System"])
    async def health_check(request: Request):
        """Check if the service is healthy."""
        svc: ConsolidationService = request.app.state.service
        return {
            "status": "healthy",
            "bar_type": svc.consolidator.input_type.__name__,
            "scanning": svc.is_running
        }

    @app.get("/schedule", tags=["System"])
    async def get_schedule(request: Request) -> Dict[str, Any]:
        """Get the close schedule and emission state."""
        svc: ConsolidationService = request.app.state.service
        consolidator = svc.consolidator
        schedule = consolidator.schedule
        last_emit = consolidator.last_emit_time
        return {
            "daily_close_time": schedule.daily_close_time.isoformat(),
            "close_time_zone": schedule.close_time_zone.key,
            "exchange_time_zone": schedule.exchange_time_zone.key,
            "emit_tolerance_seconds": consolidator.emit_tolerance.total_seconds(),
            "trigger_time": consolidator.trigger_time.value,
            "last_emit_time": last_emit.isoformat() if last_emit else None,
            "next_close": svc.next_close().isoformat()
        }

    @app.get("/bars", tags=["Bars"])
    async def get_bars(
        request: Request,
        limit: Optional[int] = Query(default=None, ge=1, le=1000)
    ) -> List[Dict[str, Any]]:
        """
        Get consolidated daily bars.

        Args:
            limit: Number of most recent bars to return
        """
        svc: ConsolidationService = request.app.state.service
        return [bar.to_dict() for bar in svc.get_history(limit)]

    @app.get("/bars/working", tags=["Bars"])
    async def get_working_bar(request: Request) -> Optional[Dict[str, Any]]:
        """Get a snapshot of the bar currently being consolidated."""
        svc: ConsolidationService = request.app.state.service
        return _bar_to_dict(svc.get_working_bar())

    @app.post("/observations/quote", tags=["Observations"])
    async def post_quote(request: Request, body: QuoteBarRequest) -> Dict[str, Any]:
        """Feed a quote bar observation."""
        try:
            data = body.to_quote_bar()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _ingest(request, data)

    @app.post("/observations/trade", tags=["Observations"])
    async def post_trade(request: Request, body: TradeBarRequest) -> Dict[str, Any]:
        """Feed a trade bar observation."""
        try:
            data = body.to_trade_bar()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _ingest(request, data)

    @app.post("/scan", tags=["Observations"])
    async def post_scan(request: Request, body: Optional[ScanRequest] = None) -> Dict[str, Any]:
        """Probe the consolidator with the current time."""
        svc: ConsolidationService = request.app.state.service
        current_time = body.current_time if body else None
        if current_time is not None and current_time.tzinfo is not None:
            raise HTTPException(status_code=400, detail="Timestamps must be naive exchange local times")
        return {"consolidated": _bar_to_dict(svc.scan(current_time))}

    return app
