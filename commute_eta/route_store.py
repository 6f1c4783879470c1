# commute_eta/route_store.py
"""
저장 경로 / 터미널 / ETA 기록 저장소 (SQLAlchemy, 동기)

비동기 코드에서는 asyncio.to_thread 로 호출한다.
로드 시 레거시 시외 구간은 leg_classifier.normalize_route_legs 로 보정한다.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.orm import selectinload, sessionmaker

from .database import BusTerminalRow, ETARecordRow, RouteLegRow, SavedRouteRow
from .intercity_bus import normalize_terminal_name
from .leg_classifier import normalize_route_legs
from .models import ETAResult, RouteLeg, SavedRoute, TerminalData

logger = logging.getLogger(__name__)


def _to_route_leg(row: RouteLegRow) -> RouteLeg:
    return RouteLeg(
        id=row.id,
        order=row.order,
        type=row.type,
        line_names=tuple(row.line_names or ()),
        start_station=row.start_station,
        end_station=row.end_station,
        start_station_id=row.start_station_id,
        section_time=row.section_time or 0,
        leg_sub_type=row.leg_sub_type,
        gyeonggi_station_id=row.gyeonggi_station_id,
    )


def _to_saved_route(row: SavedRouteRow) -> SavedRoute:
    route = SavedRoute(
        id=row.id,
        alias=row.alias,
        total_time=row.total_time,
        legs=tuple(_to_route_leg(leg) for leg in sorted(row.legs, key=lambda l: l.order)),
        route_type=row.route_type or "other",
        route_source=row.route_source,
        user_id=row.user_id,
        is_default=bool(row.is_default),
        created_at=row.created_at,
    )
    return normalize_route_legs(route)


class RouteStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_routes(self, user_id: str) -> List[SavedRoute]:
        """기본 경로가 먼저, 나머지는 생성일 역순"""
        with self._session_factory() as db:
            rows = (
                db.query(SavedRouteRow)
                .options(selectinload(SavedRouteRow.legs))
                .filter(SavedRouteRow.user_id == user_id)
                .order_by(SavedRouteRow.is_default.desc(), SavedRouteRow.created_at.desc())
                .all()
            )
            return [_to_saved_route(row) for row in rows]

    def get_route(self, route_id: str) -> Optional[SavedRoute]:
        with self._session_factory() as db:
            row = (
                db.query(SavedRouteRow)
                .options(selectinload(SavedRouteRow.legs))
                .filter(SavedRouteRow.id == route_id)
                .first()
            )
            return _to_saved_route(row) if row else None

    def add_route(self, route: SavedRoute) -> None:
        """경로와 구간을 저장한다 (구간 id 가 없으면 "<route id>-<순서>")."""
        with self._session_factory() as db:
            row = SavedRouteRow(
                id=route.id,
                user_id=route.user_id or "",
                alias=route.alias,
                is_default=route.is_default,
                total_time=route.total_time,
                route_type=route.route_type,
                route_source=route.route_source,
            )
            if route.created_at is not None:
                row.created_at = route.created_at
            for position, leg in enumerate(route.legs):
                row.legs.append(RouteLegRow(
                    id=leg.id or f"{route.id}-{position}",
                    order=leg.order if leg.order else position,
                    type=leg.type,
                    line_names=list(leg.line_names),
                    start_station=leg.start_station,
                    end_station=leg.end_station,
                    start_station_id=leg.start_station_id,
                    section_time=leg.section_time,
                    leg_sub_type=leg.leg_sub_type,
                    gyeonggi_station_id=leg.gyeonggi_station_id,
                ))
            db.add(row)
            db.commit()

    def update_gyeonggi_station_id(self, leg_id: str, station_id: str) -> None:
        with self._session_factory() as db:
            updated = (
                db.query(RouteLegRow)
                .filter(RouteLegRow.id == leg_id)
                .update({RouteLegRow.gyeonggi_station_id: station_id})
            )
            db.commit()
        if updated:
            logger.info("[RouteStore] 경기도 정류소 ID 저장: leg=%s, stationId=%s", leg_id, station_id)
        else:
            logger.warning("[RouteStore] 구간을 찾을 수 없습니다: leg=%s", leg_id)

    def save_eta_records(self, results: Sequence[ETAResult], recorded_at: datetime) -> None:
        """운행 시간 외 결과(estimated_arrival == "")는 기록하지 않는다."""
        rows = [
            ETARecordRow(
                route_id=r.route_id,
                total_eta=round(r.wait_time / 60 + r.travel_time),
                wait_time=r.wait_time,
                travel_time=r.travel_time,
                is_estimate=r.is_estimate,
                recorded_at=recorded_at,
            )
            for r in results
            if r.estimated_arrival
        ]
        if not rows:
            return
        with self._session_factory() as db:
            db.add_all(rows)
            db.commit()
        logger.debug("[RouteStore] ETA 기록 %d건 저장", len(rows))

    def get_eta_records(self, route_id: str) -> List[ETARecordRow]:
        with self._session_factory() as db:
            return (
                db.query(ETARecordRow)
                .filter(ETARecordRow.route_id == route_id)
                .order_by(ETARecordRow.recorded_at)
                .all()
            )


class TerminalStore:
    """시외버스 터미널 목록 (IntercityBusService 의 TerminalRepository)"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def load_terminals(self) -> List[TerminalData]:
        with self._session_factory() as db:
            rows = db.query(BusTerminalRow).all()
            return [
                TerminalData(
                    terminal_id=row.terminal_id,
                    terminal_nm=row.terminal_nm,
                    normalized_nm=normalize_terminal_name(row.terminal_nm),
                    city_code=row.city_code,
                    city_name=row.city_name,
                )
                for row in rows
            ]

    def save_terminals(self, terminals: Sequence[TerminalData]) -> None:
        """같은 terminalId 는 한 번만 저장한다."""
        with self._session_factory() as db:
            existing = {tid for (tid,) in db.query(BusTerminalRow.terminal_id).all()}
            added = 0
            for terminal in terminals:
                if terminal.terminal_id in existing:
                    continue
                existing.add(terminal.terminal_id)
                db.add(BusTerminalRow(
                    terminal_id=terminal.terminal_id,
                    terminal_nm=terminal.terminal_nm,
                    city_code=terminal.city_code,
                    city_name=terminal.city_name,
                ))
                added += 1
            db.commit()
        logger.info("[RouteStore] 터미널 %d개 저장", added)
