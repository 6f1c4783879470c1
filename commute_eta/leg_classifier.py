# commute_eta/leg_classifier.py
"""
구간 분류

구간 종류는 저장 데이터의 명시적 태그(type, leg_sub_type)로만 판단한다.
태그가 없던 예전 시외 경로는 normalize_route_legs() 로 로드 시점에 한 번 보정한다.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Optional

from .models import RouteLeg, SavedRoute

logger = logging.getLogger(__name__)

INTERCITY_SUB_TYPES = ("intercity_bus", "express_bus")


class LegKind(enum.Enum):
    CITY_BUS = "city_bus"
    CITY_SUBWAY = "city_subway"
    INTERCITY_BUS = "intercity_bus"
    EXPRESS_BUS = "express_bus"

    @property
    def is_intercity(self) -> bool:
        return self in (LegKind.INTERCITY_BUS, LegKind.EXPRESS_BUS)


def classify_leg(leg: RouteLeg) -> Optional[LegKind]:
    """대중교통 구간의 종류. walk / train 은 None."""
    if leg.leg_sub_type == "intercity_bus":
        return LegKind.INTERCITY_BUS
    if leg.leg_sub_type == "express_bus":
        return LegKind.EXPRESS_BUS
    if leg.type == "bus":
        return LegKind.CITY_BUS
    if leg.type == "subway":
        return LegKind.CITY_SUBWAY
    return None


def is_legacy_intercity_leg(leg: RouteLeg, route_source: Optional[str]) -> bool:
    """
    leg_sub_type 이 생기기 전에 저장된 시외 구간 추정 (휴리스틱).

    시외 경로(inter_local)의 버스 구간 중 시내 정류장 번호가 없는 것.
    레거시 데이터 보정용이며 분류 기준으로 쓰지 않는다.
    """
    return (
        route_source == "inter_local"
        and leg.type == "bus"
        and not leg.leg_sub_type
        and not leg.start_station_id
    )


def is_intercity_bus_leg(leg: RouteLeg, route_source: Optional[str] = None) -> bool:
    """
    명시적 태그가 있으면 태그로, 없으면 레거시 휴리스틱으로 판별한다.
    """
    if leg.leg_sub_type in INTERCITY_SUB_TYPES:
        return True
    return is_legacy_intercity_leg(leg, route_source)


def normalize_route_legs(route: SavedRoute) -> SavedRoute:
    """
    레거시 시외 구간에 leg_sub_type="intercity_bus" 를 채운 경로를 돌려준다.
    보정할 구간이 없으면 같은 객체를 그대로 돌려준다.
    """
    if not any(is_legacy_intercity_leg(leg, route.route_source) for leg in route.legs):
        return route

    legs = tuple(
        dataclasses.replace(leg, leg_sub_type="intercity_bus")
        if is_legacy_intercity_leg(leg, route.route_source) else leg
        for leg in route.legs
    )
    logger.debug("[RouteStore] 레거시 시외 구간 보정: route=%s", route.id)
    return dataclasses.replace(route, legs=legs)
