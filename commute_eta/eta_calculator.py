# commute_eta/eta_calculator.py
"""
ETA 계산 엔진

ETA = 현재 시각 + 대기 시간(초) + 이동 시간(분, 저장값)

- 운행 시간 외(01~05시 KST): 외부 호출 없이 빈 결과
- 시내 구간은 실시간 도착 정보, 시외 구간은 시간표로 대기 시간을 구한다
- 어떤 외부 API 가 실패해도 평균 배차 간격으로 추정한 결과를 돌려준다
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Hashable, List, Optional, Protocol, Sequence, Set, Tuple

from .constants import (
    AVERAGE_HEADWAY,
    COMMUTE_PRIORITY_CUTOFF_HOUR,
    DEFAULT_INTERCITY_LINE_NAME,
    INTERCITY_DEPARTURE_COUNT,
    NO_REALTIME_MESSAGE,
    NO_SCHEDULE_MESSAGE,
)
from .errors import ConfigurationError
from .intercity_bus import IntercityBusService
from .leg_classifier import classify_leg
from .models import (
    DashboardResult,
    ETAResult,
    IntercityDeparture,
    LegArrivalInfo,
    LegArrivals,
    ResolvedStationUpdate,
    RouteLeg,
    SavedRoute,
)
from .realtime_transit import RealtimeTransitService, unique_city_leg_key
from .time_utils import get_korea_hour, is_off_hours, now_kst, to_iso_utc, to_kst

logger = logging.getLogger(__name__)

# (경로 번호, 구간 번호)
LegRef = Tuple[int, int]


class RouteStoreProtocol(Protocol):
    """ETA 계산이 사용하는 Route Store 기능 (동기 API, 스레드에서 호출된다)"""

    def get_routes(self, user_id: str) -> List[SavedRoute]: ...

    def update_gyeonggi_station_id(self, leg_id: str, station_id: str) -> None: ...

    def save_eta_records(self, results: Sequence[ETAResult], recorded_at: datetime) -> None: ...


@dataclass
class _PrefetchedArrivals:
    """배치 조회 결과. (경로 번호, 구간 번호) 로 찾는다."""
    city: Dict[LegRef, LegArrivals] = field(default_factory=dict)
    intercity: Dict[LegRef, List[IntercityDeparture]] = field(default_factory=dict)
    resolved_station_updates: List[ResolvedStationUpdate] = field(default_factory=list)


def headway_for(leg_type: Optional[str]) -> int:
    return AVERAGE_HEADWAY.get(leg_type or "", AVERAGE_HEADWAY["bus"])


def route_type_priority(hour: int) -> Dict[str, int]:
    """13시 이전: 출근 우선, 이후: 퇴근 우선"""
    if hour < COMMUTE_PRIORITY_CUTOFF_HOUR:
        return {"commute": 0, "other": 1, "return": 2}
    return {"return": 0, "other": 1, "commute": 2}


def sort_by_route_type(results: List[ETAResult], now: datetime) -> List[ETAResult]:
    priority = route_type_priority(get_korea_hour(now))
    return sorted(results, key=lambda r: priority.get(r.route_type, 1))


class ETACalculator:
    """
    Args:
        realtime: 시내 버스/지하철 실시간 도착 정보
        intercity: 시외버스 시간표
        route_store: 경로 조회 / 경기도 정류소 ID 저장 / ETA 기록 (없으면 저장 생략)
    """

    def __init__(
        self,
        realtime: RealtimeTransitService,
        intercity: IntercityBusService,
        route_store: Optional[RouteStoreProtocol] = None,
    ):
        self.realtime = realtime
        self.intercity = intercity
        self.route_store = route_store
        self._background_tasks: Set[asyncio.Task] = set()

    # ========================================================================
    # 공개 API
    # ========================================================================

    async def calculate_eta(self, route: SavedRoute, now: Optional[datetime] = None) -> ETAResult:
        """단일 저장 경로의 ETA"""
        results = await self.calculate_etas([route], now)
        return results[0]

    async def calculate_etas(
        self, routes: Sequence[SavedRoute], now: Optional[datetime] = None
    ) -> List[ETAResult]:
        """
        여러 경로의 ETA 를 입력 순서대로 계산한다.

        모든 경로의 구간을 (모드, 정류장, 노선 집합) / (출발, 도착 터미널) 키로 모아
        키마다 한 번씩만 조회한 뒤, 경로별 결과를 그 공유 결과로부터 조립한다.
        """
        now = to_kst(now) if now else now_kst()

        if is_off_hours(now):
            return [self._off_hours_result(route) for route in routes]

        prefetched = await self._prefetch(routes, now)
        self.persist_station_updates(prefetched.resolved_station_updates)

        return [
            self._build_result(route_idx, route, now, prefetched)
            for route_idx, route in enumerate(routes)
        ]

    async def calculate_all_etas(
        self, user_id: str, now: Optional[datetime] = None
    ) -> DashboardResult:
        """
        사용자의 모든 저장 경로 ETA.
        경로 종류(출근/퇴근)별로 시간대에 맞춰 정렬한다.
        """
        if self.route_store is None:
            raise ConfigurationError("Route Store 가 설정되지 않았습니다.")

        now = to_kst(now) if now else now_kst()
        routes = await asyncio.to_thread(self.route_store.get_routes, user_id)
        results = await self.calculate_etas(routes, now)

        if not is_off_hours(now):
            self._record_eta_history(results, now)

        return DashboardResult(
            routes=sort_by_route_type(results, now),
            last_updated=to_iso_utc(now),
        )

    # ========================================================================
    # 배치 조회
    # ========================================================================

    async def _prefetch(self, routes: Sequence[SavedRoute], now: datetime) -> _PrefetchedArrivals:
        city_groups: Dict[Hashable, List[LegRef]] = {}
        intercity_groups: Dict[Tuple[str, str], List[LegRef]] = {}

        for route_idx, route in enumerate(routes):
            for leg_idx, leg in enumerate(route.legs):
                kind = classify_leg(leg)
                if kind is None:
                    continue
                ref = (route_idx, leg_idx)
                if kind.is_intercity:
                    key = (leg.start_station or "", leg.end_station or "")
                    intercity_groups.setdefault(key, []).append(ref)
                else:
                    city_groups.setdefault(unique_city_leg_key(leg), []).append(ref)

        def leg_at(ref: LegRef) -> RouteLeg:
            return routes[ref[0]].legs[ref[1]]

        city_keys = list(city_groups)
        # 키마다 대표 구간 하나만 조회 (경기도 정류소 ID 가 저장된 구간 우선)
        representatives = [
            leg_at(next(
                (r for r in city_groups[key] if leg_at(r).gyeonggi_station_id),
                city_groups[key][0],
            ))
            for key in city_keys
        ]
        intercity_keys = list(intercity_groups)

        if representatives:
            logger.info(
                "[ETA] 조회 키: 시내 %d개 (구간 %d개), 시외 %d개",
                len(city_keys), sum(len(v) for v in city_groups.values()), len(intercity_keys),
            )

        city_result, departures = await asyncio.gather(
            self.realtime.get_all_transit_arrivals(representatives),
            asyncio.gather(*(self._safe_upcoming(start, end, now) for start, end in intercity_keys)),
        )

        prefetched = _PrefetchedArrivals()

        for leg_arrivals in city_result.legs:
            for ref in city_groups[city_keys[leg_arrivals.leg_index]]:
                prefetched.city[ref] = leg_arrivals

        for key, key_departures in zip(intercity_keys, departures):
            for ref in intercity_groups[key]:
                prefetched.intercity[ref] = key_departures

        # 대표 구간에서 확인된 정류소 ID 는 같은 키의 미저장 구간에도 반영
        rep_positions = {rep.id: i for i, rep in enumerate(representatives) if rep.id}
        seen: Set[str] = set()
        for update in city_result.resolved_station_updates:
            position = rep_positions.get(update.leg_id)
            if position is None:
                continue
            for ref in city_groups[city_keys[position]]:
                leg = leg_at(ref)
                if leg.id and not leg.gyeonggi_station_id and leg.id not in seen:
                    seen.add(leg.id)
                    prefetched.resolved_station_updates.append(
                        ResolvedStationUpdate(leg_id=leg.id, station_id=update.station_id)
                    )

        return prefetched

    async def _safe_upcoming(self, start: str, end: str, now: datetime) -> List[IntercityDeparture]:
        try:
            return await self.intercity.get_upcoming_departures(
                start, end, INTERCITY_DEPARTURE_COUNT, now=now
            )
        except Exception as e:
            logger.error(f"[ETA] 시외버스 시간표 조회 실패 ({start} → {end}): {e}")
            return []

    # ========================================================================
    # 결과 조립
    # ========================================================================

    @staticmethod
    def _off_hours_result(route: SavedRoute) -> ETAResult:
        return ETAResult(
            estimated_arrival="",
            wait_time=0,
            travel_time=route.total_time,
            is_estimate=True,
            route_id=route.id,
            route_alias=route.alias,
            route_type=route.route_type,
            route_source=route.route_source,
            leg_arrivals=[],
        )

    def _build_result(
        self,
        route_idx: int,
        route: SavedRoute,
        now: datetime,
        prefetched: _PrefetchedArrivals,
    ) -> ETAResult:
        leg_arrivals: List[LegArrivalInfo] = []
        transit: List[Tuple[int, RouteLeg]] = [
            (i, leg) for i, leg in enumerate(route.legs) if classify_leg(leg) is not None
        ]

        # route.legs 순서대로 구성
        for leg_idx, leg in transit:
            ref = (route_idx, leg_idx)
            if classify_leg(leg).is_intercity:
                leg_arrivals.extend(self._intercity_entries(leg, prefetched.intercity.get(ref, [])))
            else:
                leg_arrivals.extend(self._city_entries(leg, prefetched.city.get(ref)))

        wait_time, is_estimate = self._wait_time(route_idx, transit, prefetched)

        travel_time = route.total_time
        estimated = now + timedelta(seconds=wait_time, minutes=travel_time)

        return ETAResult(
            estimated_arrival=to_iso_utc(estimated),
            wait_time=wait_time,
            travel_time=travel_time,
            is_estimate=is_estimate,
            route_id=route.id,
            route_alias=route.alias,
            route_type=route.route_type,
            route_source=route.route_source,
            leg_arrivals=leg_arrivals,
        )

    @staticmethod
    def _intercity_entries(
        leg: RouteLeg, departures: List[IntercityDeparture]
    ) -> List[LegArrivalInfo]:
        line_name = leg.line_names[0] if leg.line_names else DEFAULT_INTERCITY_LINE_NAME
        if not departures:
            return [LegArrivalInfo(
                type="bus",
                line_name=line_name,
                arrival_message=NO_SCHEDULE_MESSAGE,
                arrival_time=AVERAGE_HEADWAY["bus"],
                start_station=leg.start_station,
                end_station=leg.end_station,
                is_schedule=True,
            )]
        return [
            LegArrivalInfo(
                type="bus",
                line_name=line_name,
                arrival_message=f"{dep.departure_time} 출발 ({dep.wait_minutes}분 후)",
                arrival_time=dep.wait_minutes * 60,
                start_station=leg.start_station,
                end_station=leg.end_station,
                is_schedule=True,
            )
            for dep in departures
        ]

    @staticmethod
    def _city_entries(leg: RouteLeg, realtime: Optional[LegArrivals]) -> List[LegArrivalInfo]:
        arrivals = realtime.arrivals if realtime is not None else []
        entries = [
            LegArrivalInfo(
                type=leg.type,
                line_name=a.line_name,
                arrival_message=a.arrival_message,
                arrival_time=a.arrival_time,
                start_station=leg.start_station,
                end_station=leg.end_station,
                destination=a.destination,
            )
            for a in arrivals
        ]
        # 실시간 정보가 없는 노선은 평균 배차 간격 추정치
        live_lines = {a.line_name.lower() for a in arrivals}
        entries.extend(
            LegArrivalInfo(
                type=leg.type,
                line_name=name,
                arrival_message=NO_REALTIME_MESSAGE,
                arrival_time=headway_for(leg.type),
                start_station=leg.start_station,
                end_station=leg.end_station,
            )
            for name in leg.line_names
            if name.lower() not in live_lines
        )
        return entries

    @staticmethod
    def _wait_time(
        route_idx: int,
        transit: List[Tuple[int, RouteLeg]],
        prefetched: _PrefetchedArrivals,
    ) -> Tuple[int, bool]:
        """
        첫 번째 대중교통 구간 기준 대기 시간(초)과 추정 여부.
        """
        if not transit:
            return headway_for(None), True

        first_idx, first_leg = transit[0]

        if classify_leg(first_leg).is_intercity:
            departures = prefetched.intercity.get((route_idx, first_idx), [])
            if departures:
                return departures[0].wait_minutes * 60, False
            return AVERAGE_HEADWAY["bus"], True

        # 시내 구간 중 실시간 정보가 있는 가장 앞 구간의 첫 도착
        for leg_idx, leg in transit:
            realtime = prefetched.city.get((route_idx, leg_idx))
            if realtime is not None and realtime.arrivals:
                return realtime.arrivals[0].arrival_time, False

        return headway_for(first_leg.type), True

    # ========================================================================
    # 저장 (fire-and-forget)
    # ========================================================================

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def persist_station_updates(self, updates: List[ResolvedStationUpdate]) -> None:
        if not updates or self.route_store is None:
            return
        self._spawn(self._apply_station_updates(updates))

    async def _apply_station_updates(self, updates: List[ResolvedStationUpdate]) -> None:
        for update in updates:
            try:
                await asyncio.to_thread(
                    self.route_store.update_gyeonggi_station_id, update.leg_id, update.station_id
                )
            except Exception as e:
                logger.error(f"[ETA] 경기도 정류소 ID 저장 실패 (leg={update.leg_id}): {e}")

    def _record_eta_history(self, results: List[ETAResult], now: datetime) -> None:
        if not results or self.route_store is None:
            return
        self._spawn(self._save_eta_records(results, now))

    async def _save_eta_records(self, results: List[ETAResult], now: datetime) -> None:
        try:
            await asyncio.to_thread(self.route_store.save_eta_records, results, now)
        except Exception as e:
            logger.error(f"[ETA] ETA 기록 저장 실패: {e}")

    async def wait_for_background_tasks(self) -> None:
        """진행 중인 저장 작업이 끝날 때까지 기다린다 (테스트/종료 시)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
