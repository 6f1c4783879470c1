# commute_eta/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .constants import TRANSIT_LEG_TYPES


# ============================================================================
# 저장된 경로 (Route Store 소유, ETA 계산 동안 불변)
# ============================================================================

@dataclass(frozen=True)
class RouteLeg:
    """저장 경로의 한 구간 (승차 1회)"""
    type: str                                # "bus" / "subway" / "walk" / "train"
    line_names: Tuple[str, ...] = ()
    start_station: Optional[str] = None
    end_station: Optional[str] = None
    # 서울 arsId 는 "XX-XXX" (대시 포함), 경기도 mobileNo 는 순수 숫자
    start_station_id: Optional[str] = None
    leg_sub_type: Optional[str] = None       # "intercity_bus" / "express_bus"
    section_time: int = 0                    # 분
    gyeonggi_station_id: Optional[str] = None
    id: Optional[str] = None
    order: int = 0

    def __post_init__(self) -> None:
        # list 로 넘어와도 hashable 하게 유지
        object.__setattr__(self, "line_names", tuple(self.line_names or ()))

    @property
    def is_transit(self) -> bool:
        return self.type in TRANSIT_LEG_TYPES


@dataclass(frozen=True)
class SavedRoute:
    id: str
    alias: str
    total_time: int                          # 분 (저장 시점의 총 소요 시간)
    legs: Tuple[RouteLeg, ...] = ()
    route_type: str = "other"                # "commute" / "return" / "other"
    route_source: Optional[str] = None       # "in_local" / "inter_local"
    user_id: Optional[str] = None
    is_default: bool = False
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "legs", tuple(self.legs or ()))

    @property
    def transit_legs(self) -> List[RouteLeg]:
        return [leg for leg in self.legs if leg.is_transit]


# ============================================================================
# 실시간 도착 정보 (요청 1회 동안만 유효)
# ============================================================================

@dataclass
class ArrivalInfo:
    station_name: str
    line_name: str
    direction: str
    arrival_time: int                        # 도착까지 남은 초 (0 = 진입/정보 없음)
    arrival_message: str
    remaining_stops: Optional[int] = None
    vehicle_type: Optional[str] = None
    is_last_train: bool = False
    destination: Optional[str] = None        # 종착역 (지하철)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stationName": self.station_name,
            "lineName": self.line_name,
            "direction": self.direction,
            "arrivalTime": self.arrival_time,
            "arrivalMessage": self.arrival_message,
            "remainingStops": self.remaining_stops,
            "vehicleType": self.vehicle_type,
            "isLastTrain": self.is_last_train,
            "destination": self.destination,
        }


@dataclass
class LegArrivals:
    """Aggregator 가 구간 하나에 대해 돌려주는 결과"""
    leg_index: int                           # 입력 legs 에서의 위치
    type: str
    arrivals: List[ArrivalInfo]
    start_station: Optional[str] = None
    end_station: Optional[str] = None


@dataclass(frozen=True)
class ResolvedStationUpdate:
    """새로 확인된 경기도 정류소 ID. 호출자가 Route Store 에 반영한다."""
    leg_id: str
    station_id: str


@dataclass
class TransitArrivalsResult:
    legs: List[LegArrivals] = field(default_factory=list)
    resolved_station_updates: List[ResolvedStationUpdate] = field(default_factory=list)


# ============================================================================
# 시외버스 시간표
# ============================================================================

@dataclass(frozen=True)
class TerminalData:
    terminal_id: str
    terminal_nm: str
    normalized_nm: str
    city_code: str = ""
    city_name: str = ""


@dataclass(frozen=True)
class ParsedSchedule:
    dep_place_nm: str
    arr_place_nm: str
    dep_time: str                            # "HH:mm"
    arr_time: str                            # "HH:mm"
    dep_time_raw: str                        # "HHmm" (정렬/비교용)
    charge: int
    grade_nm: str


@dataclass
class IntercityDeparture:
    departure_time: str                      # "HH:mm" KST
    arrival_time: str                        # "HH:mm" KST
    wait_minutes: int
    grade_nm: str
    charge: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "departureTime": self.departure_time,
            "arrivalTime": self.arrival_time,
            "waitMinutes": self.wait_minutes,
            "gradeNm": self.grade_nm,
            "charge": self.charge,
        }


# ============================================================================
# ETA 결과
# ============================================================================

@dataclass
class LegArrivalInfo:
    """대시보드에 표시하는 구간별 도착 정보"""
    type: str
    line_name: str
    arrival_message: str
    arrival_time: int                        # 초
    start_station: Optional[str] = None
    end_station: Optional[str] = None
    destination: Optional[str] = None
    is_schedule: bool = False                # True = 시간표 기반 (시외버스)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "lineName": self.line_name,
            "arrivalMessage": self.arrival_message,
            "arrivalTime": self.arrival_time,
            "startStation": self.start_station,
            "endStation": self.end_station,
            "destination": self.destination,
        }
        if self.is_schedule:
            data["isSchedule"] = True
        return data


@dataclass
class ETAResult:
    estimated_arrival: str                   # ISO 8601, "" = 운행 시간 외
    wait_time: int                           # 초
    travel_time: int                         # 분
    is_estimate: bool
    route_id: str
    route_alias: str
    route_type: str
    route_source: Optional[str] = None
    leg_arrivals: List[LegArrivalInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "estimatedArrival": self.estimated_arrival,
            "waitTime": self.wait_time,
            "travelTime": self.travel_time,
            "isEstimate": self.is_estimate,
            "routeId": self.route_id,
            "routeAlias": self.route_alias,
            "routeType": self.route_type,
            "routeSource": self.route_source,
            "legArrivals": [a.to_dict() for a in self.leg_arrivals],
        }


@dataclass
class DashboardResult:
    routes: List[ETAResult]
    last_updated: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "routes": [r.to_dict() for r in self.routes],
            "lastUpdated": self.last_updated,
        }
