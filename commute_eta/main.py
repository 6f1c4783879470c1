# commute_eta/main.py
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .constants import (
    ARRIVAL_CACHE_MAX_ENTRIES,
    GYEONGGI_STATION_CACHE_TTL_SEC,
    INTERCITY_DEPARTURE_COUNT,
    SCHEDULE_CACHE_MAX_ENTRIES,
    TERMINAL_NAME_CACHE_MAX_ENTRIES,
)
from .database import create_db_engine, create_session_factory, init_db
from .errors import AppError, BadRequestError, ForbiddenError, NotFoundError
from .eta_calculator import ETACalculator
from .intercity_bus import IntercityBusService
from .leg_classifier import classify_leg
from .route_store import RouteStore, TerminalStore
from .realtime_transit import RealtimeTransitService
from .settings import Settings, load_settings
from .time_utils import is_off_hours
from .ttl_cache import TTLCache

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MAX_DEPARTURE_COUNT = 10


class AppServices:
    """
    요청 간에 공유하는 클라이언트 / 캐시 / 저장소.

    API 서비스는 최초 사용 시 생성한다. API 키가 없으면 그 시점에
    ConfigurationError 가 발생하고, 다음 요청에서 다시 시도한다.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client

        engine = create_db_engine(settings.database_url)
        init_db(engine)
        session_factory = create_session_factory(engine)
        self.engine = engine
        self.route_store = RouteStore(session_factory)
        self.terminal_store = TerminalStore(session_factory)

        self.arrival_cache = TTLCache(
            ttl=settings.arrival_cache_ttl, max_entries=ARRIVAL_CACHE_MAX_ENTRIES
        )
        self.station_cache = TTLCache(ttl=GYEONGGI_STATION_CACHE_TTL_SEC)
        self.schedule_cache = TTLCache(ttl=None, max_entries=SCHEDULE_CACHE_MAX_ENTRIES)
        self.terminal_name_cache = TTLCache(ttl=None, max_entries=TERMINAL_NAME_CACHE_MAX_ENTRIES)

        self._realtime: Optional[RealtimeTransitService] = None
        self._intercity: Optional[IntercityBusService] = None
        self._calculator: Optional[ETACalculator] = None

    @property
    def realtime(self) -> RealtimeTransitService:
        if self._realtime is None:
            self._realtime = RealtimeTransitService(
                self.http_client,
                self.settings,
                arrival_cache=self.arrival_cache,
                station_cache=self.station_cache,
            )
        return self._realtime

    @property
    def intercity(self) -> IntercityBusService:
        if self._intercity is None:
            self._intercity = IntercityBusService(
                self.http_client,
                self.settings,
                terminal_repository=self.terminal_store,
                schedule_cache=self.schedule_cache,
                terminal_name_cache=self.terminal_name_cache,
            )
        return self._intercity

    @property
    def calculator(self) -> ETACalculator:
        if self._calculator is None:
            self._calculator = ETACalculator(self.realtime, self.intercity, self.route_store)
        return self._calculator

    async def close(self) -> None:
        if self._calculator is not None:
            await self._calculator.wait_for_background_tasks()
        await self.http_client.aclose()
        self.engine.dispose()


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Args:
        settings: 기본값은 환경변수(.env)에서 읽는다.
        transport: httpx 전송 계층 (테스트에서 MockTransport 주입)
    """
    app = FastAPI(title="commute-eta")
    settings = settings or load_settings()

    @app.on_event("startup")
    async def startup_event():
        http_client = httpx.AsyncClient(transport=transport, timeout=settings.http_timeout)
        app.state.services = AppServices(settings, http_client)
        logger.info("httpx.AsyncClient initialized (db=%s)", settings.database_url)

    @app.on_event("shutdown")
    async def shutdown_event():
        services: Optional[AppServices] = getattr(app.state, "services", None)
        if services is None:
            return
        await services.close()
        logger.info("httpx.AsyncClient closed")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.frontend_urls,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "INTERNAL_ERROR", "message": "서버 내부 오류가 발생했습니다."}},
        )

    def services_of(request: Request) -> AppServices:
        return request.app.state.services

    def require_user(user_id: Optional[str]) -> str:
        if not user_id:
            raise BadRequestError("X-User-Id 헤더가 필요합니다.")
        return user_id

    async def load_owned_route(services: AppServices, route_id: str, user_id: str):
        route = await asyncio.to_thread(services.route_store.get_route, route_id)
        if route is None:
            raise NotFoundError("저장된 경로를 찾을 수 없습니다.")
        if route.user_id != user_id:
            raise ForbiddenError("해당 경로에 대한 접근 권한이 없습니다.")
        return route

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/dashboard")
    async def get_dashboard(
        request: Request,
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        user_id = require_user(x_user_id)
        logger.info("GET /api/dashboard user=%s", user_id)
        result = await services_of(request).calculator.calculate_all_etas(user_id)
        return result.to_dict()

    @app.get("/api/routes/{route_id}/eta")
    async def get_route_eta(
        route_id: str,
        request: Request,
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        user_id = require_user(x_user_id)
        services = services_of(request)
        route = await load_owned_route(services, route_id, user_id)
        result = await services.calculator.calculate_eta(route)
        return result.to_dict()

    @app.get("/api/realtime/{route_id}")
    async def get_realtime(
        route_id: str,
        request: Request,
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        """
        경로의 시내 대중교통 구간 실시간 도착 정보 (구간 구분 없이 합쳐서 반환)
        """
        user_id = require_user(x_user_id)
        services = services_of(request)
        route = await load_owned_route(services, route_id, user_id)

        if not route.transit_legs:
            raise BadRequestError("대중교통 구간이 없는 경로입니다.")

        if is_off_hours():
            return {"message": "현재 운행 시간이 아닙니다", "arrivals": [], "offHours": True}

        city_legs = [
            leg for leg in route.legs
            if classify_leg(leg) is not None and not classify_leg(leg).is_intercity
        ]
        result = await services.realtime.get_all_transit_arrivals(city_legs)
        services.calculator.persist_station_updates(result.resolved_station_updates)

        arrivals = [a.to_dict() for leg in result.legs for a in leg.arrivals]
        if not arrivals:
            return {"message": "현재 도착 정보가 없습니다.", "arrivals": [], "offHours": False}
        return {"arrivals": arrivals, "offHours": False}

    @app.get("/api/intercity/departures")
    async def get_intercity_departures(
        request: Request,
        start: str = Query(...),
        end: str = Query(...),
        count: int = Query(INTERCITY_DEPARTURE_COUNT),
    ) -> Dict[str, Any]:
        if not start.strip() or not end.strip():
            raise BadRequestError("start / end 터미널 이름이 필요합니다.")
        if not 1 <= count <= MAX_DEPARTURE_COUNT:
            raise BadRequestError(f"count 는 1 ~ {MAX_DEPARTURE_COUNT} 사이여야 합니다.")

        departures = await services_of(request).intercity.get_upcoming_departures(
            start.strip(), end.strip(), count
        )
        return {"departures": [d.to_dict() for d in departures]}

    return app


app = create_app()


def run() -> None:
    """개발용 서버 실행 (uvicorn)"""
    uvicorn.run(
        "commute_eta.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    run()
