# commute_eta/realtime_transit.py
"""
실시간 대중교통 도착 정보 클라이언트

- 서울 버스 (XML, 정류소 arsId)
- 경기도 버스 (JSON, mobileNo → 내부 stationId 변환 후 조회)
- 서울 지하철 (JSON, 역 이름)

외부 API 실패(타임아웃, HTTP 에러, 응답 코드 에러)는 로그만 남기고
빈 결과로 흡수한다. 구간 하나의 실패가 ETA 계산 전체를 실패시키지 않는다.
"""
from __future__ import annotations

import asyncio
import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from .constants import (
    ARRIVAL_CACHE_MAX_ENTRIES,
    GYEONGGI_BUS_ARRIVAL_URL,
    GYEONGGI_STATION_CACHE_TTL_SEC,
    GYEONGGI_STATION_SEARCH_URL,
    MAX_ARRIVALS_PER_LINE,
    NO_INFO_MESSAGE,
    SEOUL_BUS_ARRIVAL_URL,
    SUBWAY_ARRIVAL_URL_TEMPLATE,
)
from .models import (
    ArrivalInfo,
    LegArrivals,
    ResolvedStationUpdate,
    RouteLeg,
    TransitArrivalsResult,
)
from .settings import Settings
from .subway_graph import SubwayNetwork, default_network, normalize_station_name
from .subway_stations import get_subway_line_name
from .ttl_cache import TTLCache

logger = logging.getLogger(__name__)

# 경기도 정류소 검색 결과 "없음" 표시 (빈 문자열로 캐시)
_UNRESOLVED = ""


def is_seoul_stop_code(stop_code: str) -> bool:
    """서울 arsId 는 "XX-XXX" (대시 포함), 경기도 mobileNo 는 순수 숫자"""
    return "-" in stop_code


def strip_station_suffix(name: str) -> str:
    return re.sub(r"역$", "", name)


def matches_line_names(line_name: str, line_names: Iterable[str]) -> bool:
    """대소문자 무시 정확 일치"""
    target = line_name.lower()
    return any(target == name.lower() for name in line_names)


def sort_and_cap_arrivals(
    arrivals: List[ArrivalInfo], per_line: int = MAX_ARRIVALS_PER_LINE
) -> List[ArrivalInfo]:
    """
    도착 시간 오름차순 정렬 (0 = 진입/미상은 가장 먼저) 후 노선별 최대 per_line 대
    """
    ordered = sorted(arrivals, key=lambda a: (a.arrival_time != 0, a.arrival_time))
    counts: Dict[str, int] = {}
    capped: List[ArrivalInfo] = []
    for arrival in ordered:
        count = counts.get(arrival.line_name, 0)
        if count >= per_line:
            continue
        counts[arrival.line_name] = count + 1
        capped.append(arrival)
    return capped


def _to_int(value: Any) -> Optional[int]:
    """숫자 또는 숫자 문자열만 int 로. 빈 문자열/None 은 None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _as_list(items: Any) -> List[Any]:
    if items is None:
        return []
    return items if isinstance(items, list) else [items]


class RealtimeTransitService:
    """
    모드별 실시간 도착 정보 클라이언트와 구간 집계기.

    캐시는 생성 시 주입받는다. 주입하지 않으면 인스턴스 전용 캐시를 만든다.
    앱에서는 startup 에 한 번 생성한 인스턴스를 모든 요청이 공유한다.

    Args:
        client: httpx.AsyncClient (앱 수명 동안 공유)
        settings: API 키 / 타임아웃. 키가 없으면 ConfigurationError.
        arrival_cache: 버스/지하철 도착 원시 결과 캐시 (기본 20초)
        station_cache: 경기도 mobileNo → stationId 캐시
        network: 지하철 노선 그래프 (기본: 전체 노선)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        arrival_cache: Optional[TTLCache] = None,
        station_cache: Optional[TTLCache] = None,
        network: Optional[SubwayNetwork] = None,
    ):
        self._data_go_kr_key = settings.require_data_go_kr_key()
        self._seoul_key = settings.require_seoul_key()
        self._client = client
        self._timeout = settings.http_timeout
        self.arrival_cache = arrival_cache if arrival_cache is not None else TTLCache(
            ttl=settings.arrival_cache_ttl, max_entries=ARRIVAL_CACHE_MAX_ENTRIES
        )
        self.station_cache = station_cache if station_cache is not None else TTLCache(
            ttl=GYEONGGI_STATION_CACHE_TTL_SEC
        )
        self._network = network

    @property
    def network(self) -> SubwayNetwork:
        if self._network is None:
            self._network = default_network()
        return self._network

    # ========================================================================
    # HTTP
    # ========================================================================

    async def _get(
        self, url: str, params: Optional[Dict[str, str]], label: str
    ) -> Optional[httpx.Response]:
        """
        GET 요청. 실패 시 로그를 남기고 None.
        """
        try:
            response = await self._client.get(url, params=params, timeout=self._timeout)
            response.raise_for_status()
            return response
        except httpx.TimeoutException:
            logger.error("[RealtimeTransit] %s 요청 타임아웃", label)
        except httpx.HTTPStatusError as e:
            logger.error("[RealtimeTransit] %s HTTP 실패: %s", label, e.response.status_code)
        except httpx.HTTPError as e:
            logger.error(f"[RealtimeTransit] {label} 요청 실패: {e}")
        return None

    async def _get_json(
        self, url: str, params: Optional[Dict[str, str]], label: str
    ) -> Optional[Dict[str, Any]]:
        response = await self._get(url, params, label)
        if response is None:
            return None
        try:
            data = response.json()
        except ValueError:
            logger.error("[RealtimeTransit] %s 응답이 JSON 이 아닙니다", label)
            return None
        if not isinstance(data, dict):
            logger.error("[RealtimeTransit] %s 예상하지 못한 응답 형식", label)
            return None
        return data

    # ========================================================================
    # 버스
    # ========================================================================

    async def get_bus_arrival(
        self,
        stop_code: str,
        line_names: Sequence[str] = (),
        station_name: Optional[str] = None,
        pre_resolved_gyeonggi_id: Optional[str] = None,
    ) -> List[ArrivalInfo]:
        """
        버스 도착 정보 조회 (서울 → 경기도 순서로 시도)

        Args:
            stop_code: 정류장 고유 번호 (arsId 또는 mobileNo)
            line_names: 구간의 노선명. 서울 결과에 일치하는 노선이 없으면 경기도로 넘어간다.
            station_name: 정류장 이름 (경기도 정류소 중복 번호 판별용)
            pre_resolved_gyeonggi_id: DB 에 저장된 경기도 stationId (검색 생략)
        """
        if is_seoul_stop_code(stop_code):
            seoul_arrivals = await self._get_seoul_bus_arrival(stop_code)
            if seoul_arrivals:
                if not line_names:
                    return seoul_arrivals
                if any(matches_line_names(a.line_name, line_names) for a in seoul_arrivals):
                    return seoul_arrivals
                logger.debug(
                    "[RealtimeTransit] 서울 정류장 %s 에 %s 노선 없음, 경기도 조회",
                    stop_code, list(line_names),
                )

        return await self._get_gyeonggi_bus_arrival(
            stop_code, station_name, pre_resolved_gyeonggi_id
        )

    async def _get_seoul_bus_arrival(self, stop_code: str) -> List[ArrivalInfo]:
        # API 는 대시 없는 5자리 숫자 ("13-123" → "13123")
        ars_id = stop_code.replace("-", "")
        cache_key = f"seoul:{ars_id}"
        cached = self.arrival_cache.get(cache_key)
        if cached is not None:
            return cached

        response = await self._get(
            SEOUL_BUS_ARRIVAL_URL,
            {"serviceKey": self._data_go_kr_key, "arsId": ars_id},
            "서울 버스 도착 정보",
        )
        if response is None:
            return []

        arrivals = self._parse_seoul_bus_xml(response.text)
        if arrivals is None:
            return []

        self.arrival_cache.set(cache_key, arrivals)
        return arrivals

    @staticmethod
    def _parse_seoul_bus_xml(xml_text: str) -> Optional[List[ArrivalInfo]]:
        """
        getStationByUid XML 을 ArrivalInfo 로 변환한다.
        응답 코드 에러/파싱 실패는 None (캐시하지 않음).
        """
        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError as e:
            logger.error(f"[RealtimeTransit] 서울 버스 XML 파싱 실패: {e}")
            return None

        header_cd = (root.findtext("msgHeader/headerCd") or "").strip()
        if header_cd and header_cd != "0":
            header_msg = root.findtext("msgHeader/headerMsg") or "알 수 없는 오류"
            logger.warning(
                "[RealtimeTransit] 서울 버스 API 응답 에러: %s - %s", header_cd, header_msg
            )
            return None

        arrivals: List[ArrivalInfo] = []
        for item in root.findall("msgBody/itemList"):
            def text(tag: str) -> str:
                return (item.findtext(tag) or "").strip()

            msg1 = text("arrmsg1")
            msg2 = text("arrmsg2")
            line_name = text("busRouteAbrv") or text("rtNm")
            direction = text("adirection") or text("nxtStn") or text("sectNm")
            station_name = text("stNm")

            if "운행종료" not in msg1:
                arrivals.append(ArrivalInfo(
                    station_name=station_name,
                    line_name=line_name,
                    direction=direction,
                    arrival_time=_to_int(text("traTime1")) or 0,
                    arrival_message=msg1 or NO_INFO_MESSAGE,
                    remaining_stops=_to_int(text("rerideNum1")),
                    vehicle_type="버스",
                    is_last_train=text("isLast1") == "1",
                ))

            if msg2 and "운행종료" not in msg2 and msg2 != NO_INFO_MESSAGE:
                arrivals.append(ArrivalInfo(
                    station_name=station_name,
                    line_name=line_name,
                    direction=direction,
                    arrival_time=_to_int(text("traTime2")) or 0,
                    arrival_message=msg2,
                    remaining_stops=_to_int(text("rerideNum2")),
                    vehicle_type="버스",
                    is_last_train=text("isLast2") == "1",
                ))

        return arrivals

    async def resolve_gyeonggi_station_id(
        self, mobile_no: str, station_name: Optional[str] = None
    ) -> Optional[str]:
        """
        경기도 정류소 번호(mobileNo)로 내부 stationId 를 조회한다.

        - mobileNo 가 정확히 일치하는 후보가 1개면 그 정류소
        - 여러 개면 정류소 이름 부분 일치로 판별, 판별 불가 시 None
        - 일치 후보가 없고 검색 결과가 1개뿐이면 그 정류소
        """
        cached = self.station_cache.get(mobile_no)
        if cached is not None:
            return cached or None

        data = await self._get_json(
            GYEONGGI_STATION_SEARCH_URL,
            {"serviceKey": self._data_go_kr_key, "keyword": mobile_no, "format": "json"},
            "경기도 정류소 검색",
        )
        if data is None:
            return None

        body = data.get("response") or {}
        header = body.get("msgHeader") or {}
        if header.get("resultCode") != 0:
            # resultCode 4 = 결과 없음
            if header.get("resultCode") == 4:
                self.station_cache.set(mobile_no, _UNRESOLVED)
            logger.warning(
                "[RealtimeTransit] 경기도 정류소 검색 실패: resultCode=%s, message=%s",
                header.get("resultCode"), header.get("resultMessage"),
            )
            return None

        items = _as_list((body.get("msgBody") or {}).get("busStationList"))
        target = self._pick_gyeonggi_station(items, mobile_no, station_name)

        station_id = str(target["stationId"]) if target and target.get("stationId") else None
        self.station_cache.set(mobile_no, station_id or _UNRESOLVED)
        return station_id

    @staticmethod
    def _pick_gyeonggi_station(
        items: List[Dict[str, Any]], mobile_no: str, station_name: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        matches = [i for i in items if str(i.get("mobileNo", "")).strip() == mobile_no.strip()]

        if len(matches) == 1:
            return matches[0]

        if len(matches) > 1:
            if not station_name:
                logger.warning(
                    "[RealtimeTransit] 경기도 정류소 후보 %d개, 이름 정보 없음: mobileNo=%s",
                    len(matches), mobile_no,
                )
                return None
            clean_name = re.sub(r"\s", "", station_name)
            for item in matches:
                api_name = re.sub(r"\s", "", str(item.get("stationName", "")))
                if api_name and (clean_name in api_name or api_name in clean_name):
                    return item
            logger.warning(
                "[RealtimeTransit] 경기도 정류소 이름 매칭 실패: mobileNo=%s, stationName=%s, 후보=%s",
                mobile_no, station_name, ", ".join(str(m.get("stationName")) for m in matches),
            )
            return None

        if len(items) == 1:
            return items[0]
        return None

    async def _get_gyeonggi_bus_arrival(
        self,
        mobile_no: str,
        station_name: Optional[str] = None,
        pre_resolved_station_id: Optional[str] = None,
    ) -> List[ArrivalInfo]:
        station_id = pre_resolved_station_id or await self.resolve_gyeonggi_station_id(
            mobile_no, station_name
        )
        if not station_id:
            return []

        cache_key = f"gyeonggi:{station_id}"
        cached = self.arrival_cache.get(cache_key)
        if cached is not None:
            return cached

        data = await self._get_json(
            GYEONGGI_BUS_ARRIVAL_URL,
            {"serviceKey": self._data_go_kr_key, "stationId": station_id, "format": "json"},
            "경기도 버스 도착 정보",
        )
        if data is None:
            return []

        body = data.get("response") or {}
        header = body.get("msgHeader") or {}
        result_code = header.get("resultCode")
        if result_code == 4:
            # 도착 예정 버스 없음
            self.arrival_cache.set(cache_key, [])
            return []
        if result_code != 0:
            logger.warning(
                "[RealtimeTransit] 경기도 버스 API 응답 에러: %s - %s",
                result_code, header.get("resultMessage"),
            )
            return []

        items = _as_list((body.get("msgBody") or {}).get("busArrivalList"))
        arrivals = self._parse_gyeonggi_items(items)
        self.arrival_cache.set(cache_key, arrivals)
        return arrivals

    @staticmethod
    def _parse_gyeonggi_items(items: List[Dict[str, Any]]) -> List[ArrivalInfo]:
        arrivals: List[ArrivalInfo] = []

        for item in items:
            # STOP = 운행 종료 (PASS 는 경유 중인 정상 운행)
            if item.get("flag") == "STOP":
                continue

            # "마을2-1" → "2-1"
            line_name = re.sub(r"^마을", "", str(item.get("routeName") or ""))

            for n in (1, 2):
                minutes = _to_int(item.get(f"predictTime{n}")) or 0
                if minutes <= 0:
                    continue
                seconds = _to_int(item.get(f"predictTimeSec{n}"))
                location = _to_int(item.get(f"locationNo{n}")) or 0
                arrivals.append(ArrivalInfo(
                    station_name="",
                    line_name=line_name,
                    direction="",
                    arrival_time=seconds if seconds is not None else minutes * 60,
                    arrival_message=f"{minutes}분 후",
                    remaining_stops=location if location > 0 else None,
                    vehicle_type="버스",
                    is_last_train=False,
                ))

        return arrivals

    # ========================================================================
    # 지하철
    # ========================================================================

    async def get_subway_raw_arrivals(self, station_name: str) -> List[Dict[str, Any]]:
        """
        역의 모든 열차 정보를 방향 필터링 없이 조회한다 (역 단위 캐시).

        Args:
            station_name: 역 이름 (예: "강남", "서울역")
        """
        clean_name = strip_station_suffix(station_name)
        cache_key = f"subway:{clean_name}"
        cached = self.arrival_cache.get(cache_key)
        if cached is not None:
            return cached

        url = SUBWAY_ARRIVAL_URL_TEMPLATE.format(
            key=quote(self._seoul_key, safe=""),
            station=quote(clean_name, safe=""),
        )
        data = await self._get_json(url, None, "지하철 도착 정보")
        if data is None:
            return []

        # 결과가 있으면 errorMessage 안에, 없으면 최상위에 code 가 온다
        error = data.get("errorMessage")
        if not isinstance(error, dict):
            error = data
        code = error.get("code")
        if code and code != "INFO-000":
            if code == "INFO-200":
                # 해당 데이터 없음 (운행 시간 외 가능)
                logger.info("[RealtimeTransit] 지하철 실시간 정보 없음: %s", clean_name)
                self.arrival_cache.set(cache_key, [])
                return []
            logger.warning(
                "[RealtimeTransit] 지하철 API 응답 에러: %s - %s", code, error.get("message")
            )
            return []

        items = [i for i in _as_list(data.get("realtimeArrivalList")) if isinstance(i, dict)]
        self.arrival_cache.set(cache_key, items)
        return items

    def _train_matches_destination(
        self, item: Dict[str, Any], start: str, end: str
    ) -> bool:
        line_id = str(item.get("subwayId", ""))
        updn_line = item.get("updnLine")
        terminal = normalize_station_name(str(item.get("bstatnNm") or ""))

        def direction_fallback() -> bool:
            direction = self.network.determine_subway_direction(line_id, start, end)
            return direction is not None and updn_line == direction

        if not terminal:
            return direction_fallback()

        if self.network.will_train_reach_station(line_id, start, end, terminal, updn_line):
            return True

        # 종착역이 노선 데이터에 없으면 위치 비교로 판별
        if not self.network.is_station_known(line_id, terminal):
            return direction_fallback()
        return False

    def filter_subway_arrivals(
        self,
        items: List[Dict[str, Any]],
        station_name: str,
        end_station: Optional[str] = None,
    ) -> List[ArrivalInfo]:
        """
        원시 열차 목록을 하차역 방향으로 필터링 → 도착 시간 정렬 → 최대 2대로 변환한다.
        방향을 판별할 수 없으면 빈 목록 (평균 배차 간격 추정으로 대체).
        """
        clean_name = strip_station_suffix(station_name)
        filtered = list(items)

        if end_station and filtered:
            clean_end = strip_station_suffix(end_station)
            filtered = [
                item for item in filtered
                if self._train_matches_destination(item, clean_name, clean_end)
            ]
            if not filtered:
                logger.info(
                    "[RealtimeTransit] 지하철 방향 판별 실패: %s → %s, 실시간 정보 생략",
                    clean_name, clean_end,
                )
                return []

        def arrival_seconds(item: Dict[str, Any]) -> int:
            return _to_int(item.get("barvlDt")) or 0

        filtered.sort(key=lambda i: (arrival_seconds(i) != 0, arrival_seconds(i)))

        arrivals: List[ArrivalInfo] = []
        for item in filtered[:MAX_ARRIVALS_PER_LINE]:
            message = item.get("arvlMsg2") or item.get("arvlMsg3") or NO_INFO_MESSAGE
            destination = strip_station_suffix(str(item.get("bstatnNm") or "")) or None
            arrivals.append(ArrivalInfo(
                station_name=item.get("statnNm") or clean_name,
                line_name=item.get("subwayNm") or get_subway_line_name(str(item.get("subwayId", ""))),
                direction=item.get("trainLineNm") or item.get("updnLine") or "",
                arrival_time=arrival_seconds(item),
                # "[5]번째 전역" → "5번째 전역"
                arrival_message=re.sub(r"\[(\d+)\]", r"\1", str(message)),
                remaining_stops=None,
                vehicle_type=item.get("btrainSttus") or "지하철",
                is_last_train=str(item.get("lstcarAt")) == "1",
                destination=destination,
            ))
        return arrivals

    async def get_subway_arrival(
        self, station_name: str, end_station: Optional[str] = None
    ) -> List[ArrivalInfo]:
        items = await self.get_subway_raw_arrivals(station_name)
        return self.filter_subway_arrivals(items, station_name, end_station)

    # ========================================================================
    # 구간 집계
    # ========================================================================

    async def get_all_transit_arrivals(self, legs: Sequence[RouteLeg]) -> TransitArrivalsResult:
        """
        경로의 모든 대중교통 구간(bus/subway)에 대한 도착 정보를 병렬 조회한다.

        결과의 각 LegArrivals.leg_index 는 입력 legs 에서의 위치다.
        도착 정보가 없는 구간은 결과에 포함되지 않는다.
        새로 확인된 경기도 정류소 ID 는 resolved_station_updates 로 돌려준다.
        """
        indexed = [(i, leg) for i, leg in enumerate(legs) if leg.is_transit]
        if not indexed:
            return TransitArrivalsResult()

        # 같은 역의 여러 구간(다른 노선/방향)은 원시 조회 1회를 공유
        subway_stations = list(dict.fromkeys(
            leg.start_station for _, leg in indexed
            if leg.type == "subway" and leg.start_station
        ))
        raw_results = await asyncio.gather(
            *(self.get_subway_raw_arrivals(s) for s in subway_stations)
        )
        subway_raw = dict(zip(subway_stations, raw_results))

        updates: List[ResolvedStationUpdate] = []

        async def query(index: int, leg: RouteLeg) -> Optional[LegArrivals]:
            try:
                return await self._query_leg(index, leg, subway_raw, updates)
            except Exception as e:
                logger.error(f"[RealtimeTransit] {leg.type} 도착 정보 조회 실패: {e}")
                return None

        results = await asyncio.gather(*(query(i, leg) for i, leg in indexed))
        return TransitArrivalsResult(
            legs=[r for r in results if r is not None],
            resolved_station_updates=updates,
        )

    async def _query_leg(
        self,
        index: int,
        leg: RouteLeg,
        subway_raw: Dict[str, List[Dict[str, Any]]],
        updates: List[ResolvedStationUpdate],
    ) -> Optional[LegArrivals]:
        arrivals: List[ArrivalInfo] = []

        if leg.type == "bus":
            if not leg.start_station_id:
                logger.warning("[RealtimeTransit] 버스 도착 조회를 위한 정류장 ID가 없습니다.")
                return None

            pre_resolved = None
            if not is_seoul_stop_code(leg.start_station_id):
                if leg.gyeonggi_station_id:
                    pre_resolved = leg.gyeonggi_station_id
                else:
                    pre_resolved = await self.resolve_gyeonggi_station_id(
                        leg.start_station_id, leg.start_station
                    )
                    if pre_resolved and leg.id:
                        updates.append(ResolvedStationUpdate(leg_id=leg.id, station_id=pre_resolved))

            arrivals = await self.get_bus_arrival(
                leg.start_station_id, leg.line_names, leg.start_station, pre_resolved
            )
        elif leg.type == "subway":
            if not leg.start_station:
                logger.warning("[RealtimeTransit] 지하철 도착 조회를 위한 역 이름이 없습니다.")
                return None
            arrivals = self.filter_subway_arrivals(
                subway_raw.get(leg.start_station, []), leg.start_station, leg.end_station
            )

        if leg.line_names:
            arrivals = [a for a in arrivals if matches_line_names(a.line_name, leg.line_names)]

        if not arrivals:
            return None

        return LegArrivals(
            leg_index=index,
            type=leg.type,
            arrivals=sort_and_cap_arrivals(arrivals),
            start_station=leg.start_station,
            end_station=leg.end_station,
        )


def unique_city_leg_key(leg: RouteLeg) -> Tuple[str, str, Optional[str], Tuple[str, ...]]:
    """
    배치 조회 중복 제거 키: (모드, 정류장 번호 또는 역 이름, 지하철 하차역, 노선 집합)
    """
    if leg.type == "bus":
        station = leg.start_station_id or ""
        end = None
    else:
        station = strip_station_suffix(leg.start_station or "")
        end = strip_station_suffix(leg.end_station) if leg.end_station else None
    lines = tuple(sorted({name.lower() for name in leg.line_names}))
    return leg.type, station, end, lines
