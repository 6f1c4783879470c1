# commute_eta/intercity_bus.py
"""
시외버스 터미널 / 시간표 서비스

- 터미널 목록: 최초 사용 시 DB 에서 로드, 비어 있으면 17개 시도 API 를 병렬 조회해 저장
- 터미널 이름 → terminalId: 5단계 퍼지 매칭 (실패 결과도 캐시)
- 시간표: (출발 터미널, 도착 터미널, 날짜) 단위 캐시. 날짜가 바뀌면 자연히 만료
"""
from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import httpx

from .constants import (
    INTERCITY_DEPARTURE_COUNT,
    INTERCITY_SCHEDULE_URL,
    INTERCITY_TERMINAL_LIST_URL,
    SCHEDULE_CACHE_MAX_ENTRIES,
    TERMINAL_NAME_CACHE_MAX_ENTRIES,
)
from .models import IntercityDeparture, ParsedSchedule, TerminalData
from .settings import Settings
from .time_utils import korea_date_string, korea_time_string, minutes_since_midnight, now_kst
from .ttl_cache import TTLCache

logger = logging.getLogger(__name__)

# 시외버스 API 도시 코드
CITY_CODES: Tuple[Tuple[str, str], ...] = (
    ("11", "서울특별시"),
    ("12", "세종특별시"),
    ("21", "부산광역시"),
    ("22", "대구광역시"),
    ("23", "인천광역시"),
    ("24", "광주광역시"),
    ("25", "대전광역시"),
    ("26", "울산광역시"),
    ("31", "경기도"),
    ("32", "강원도"),
    ("33", "충청북도"),
    ("34", "충청남도"),
    ("35", "전라북도"),
    ("36", "전라남도"),
    ("37", "경상북도"),
    ("38", "경상남도"),
    ("39", "제주도"),
)

# 긴 접미사부터 검사한다
TERMINAL_SUFFIXES: Tuple[str, ...] = (
    "종합버스터미널",
    "종합터미널",
    "시외버스터미널",
    "고속버스터미널",
    "버스터미널",
    "시외터미널",
    "고속터미널",
    "터미널",
    "공용버스정류장",
    "시외",
    "고속",
)

# 터미널 매칭 실패 표시 (빈 문자열로 캐시)
_NOT_FOUND = ""


def normalize_terminal_name(name: str) -> str:
    """
    공백 제거 후 첫 번째로 일치하는 접미사 하나를 제거한다.
    "동서울 종합터미널" → "동서울", 이름 전체가 접미사인 경우는 그대로.
    """
    normalized = re.sub(r"\s+", "", name)
    for suffix in TERMINAL_SUFFIXES:
        if normalized.endswith(suffix) and len(normalized) > len(suffix):
            return normalized[: -len(suffix)]
    return normalized


def match_terminal(terminals: Sequence[TerminalData], name: str) -> Optional[TerminalData]:
    """
    터미널 이름 퍼지 매칭. 먼저 성공한 단계의 첫 후보를 돌려준다.

    1) 정확히 일치
    2) 터미널 이름이 입력을 포함
    3) 입력이 터미널 이름을 포함
    4) 정규화된 이름 정확히 일치
    5) 정규화된 이름 포함 관계 (양방향)
    """
    clean_name = normalize_terminal_name(name)
    tiers = (
        lambda t: t.terminal_nm == name,
        lambda t: name in t.terminal_nm,
        lambda t: t.terminal_nm in name,
        lambda t: t.normalized_nm == clean_name,
        lambda t: bool(t.normalized_nm) and (
            clean_name in t.normalized_nm or t.normalized_nm in clean_name
        ),
    )
    for matches in tiers:
        found = next((t for t in terminals if matches(t)), None)
        if found is not None:
            return found
    return None


def parse_schedule_item(item: Dict[str, Any]) -> Optional[ParsedSchedule]:
    """depPlandTime / arrPlandTime 은 YYYYMMDDHHmm (숫자 또는 문자열)"""
    dep_raw = str(item.get("depPlandTime") or "")
    arr_raw = str(item.get("arrPlandTime") or "")
    if len(dep_raw) < 12 or not dep_raw[8:12].isdigit():
        return None

    dep_hh, dep_mm = dep_raw[8:10], dep_raw[10:12]
    arr_hh, arr_mm = (arr_raw[8:10], arr_raw[10:12]) if len(arr_raw) >= 12 else ("", "")

    try:
        charge = int(item.get("charge") or 0)
    except (TypeError, ValueError):
        charge = 0

    return ParsedSchedule(
        dep_place_nm=str(item.get("depPlaceNm") or ""),
        arr_place_nm=str(item.get("arrPlaceNm") or ""),
        dep_time=f"{dep_hh}:{dep_mm}",
        arr_time=f"{arr_hh}:{arr_mm}" if arr_hh else "",
        dep_time_raw=f"{dep_hh}{dep_mm}",
        charge=charge,
        grade_nm=str(item.get("gradeNm") or ""),
    )


def _response_items(data: Any) -> List[Dict[str, Any]]:
    """data.go.kr 공통 응답의 response.body.items.item (단일 항목이면 dict)"""
    if not isinstance(data, dict):
        return []
    body = (data.get("response") or {}).get("body") or {}
    items = body.get("items")
    if not isinstance(items, dict):
        # 결과가 없으면 items 가 "" 로 오는 경우가 있다
        return []
    item = items.get("item")
    if item is None:
        return []
    return [i for i in (item if isinstance(item, list) else [item]) if isinstance(i, dict)]


class TerminalRepository(Protocol):
    """터미널 목록 영속화 (동기 API, 스레드에서 호출된다)"""

    def load_terminals(self) -> List[TerminalData]: ...

    def save_terminals(self, terminals: Sequence[TerminalData]) -> None: ...


class IntercityBusService:
    """
    Args:
        client: httpx.AsyncClient
        settings: DATA_GO_KR_API_KEY 가 없으면 ConfigurationError
        terminal_repository: 터미널 목록 저장소. None 이면 매번 API 에서 동기화한다.
        schedule_cache: "dep:arr:YYYYMMDD" → (날짜, 시간표)
        terminal_name_cache: 입력 이름 → terminalId (실패는 "")
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings,
        terminal_repository: Optional[TerminalRepository] = None,
        schedule_cache: Optional[TTLCache] = None,
        terminal_name_cache: Optional[TTLCache] = None,
    ):
        self._data_go_kr_key = settings.require_data_go_kr_key()
        self._client = client
        self._timeout = settings.http_timeout
        self._repository = terminal_repository
        self.schedule_cache = schedule_cache if schedule_cache is not None else TTLCache(
            ttl=None, max_entries=SCHEDULE_CACHE_MAX_ENTRIES
        )
        self.terminal_name_cache = (
            terminal_name_cache if terminal_name_cache is not None
            else TTLCache(ttl=None, max_entries=TERMINAL_NAME_CACHE_MAX_ENTRIES)
        )
        self._terminals: List[TerminalData] = []
        self._sync_task: Optional[asyncio.Task] = None

    @property
    def terminals(self) -> List[TerminalData]:
        return list(self._terminals)

    # ========================================================================
    # 터미널 목록
    # ========================================================================

    async def ensure_terminals_loaded(self) -> None:
        """
        터미널 목록을 한 번만 로드한다.
        동시에 들어온 최초 호출들은 같은 동기화 작업을 기다린다.
        한 호출이 취소되어도 공유 작업은 계속 진행된다.
        """
        if self._terminals:
            return

        if self._sync_task is None:
            self._sync_task = asyncio.ensure_future(self._load_terminals())

        task = self._sync_task
        try:
            self._terminals = await asyncio.shield(task)
        except Exception as e:
            logger.error(f"[IntercityBus] 터미널 데이터 로드 실패: {e}")
        finally:
            # 실패했거나 비어 있으면 다음 호출에서 다시 시도
            if task.done() and not self._terminals and self._sync_task is task:
                self._sync_task = None

    async def _load_terminals(self) -> List[TerminalData]:
        if self._repository is not None:
            existing = await asyncio.to_thread(self._repository.load_terminals)
            if existing:
                logger.info("[IntercityBus] DB 에서 터미널 %d개 로드", len(existing))
                return list(existing)

        logger.info("[IntercityBus] 터미널 데이터 동기화 시작...")
        results = await asyncio.gather(
            *(self._fetch_terminals(code, name) for code, name in CITY_CODES),
            return_exceptions=True,
        )

        terminals: List[TerminalData] = []
        for (code, _), result in zip(CITY_CODES, results):
            if isinstance(result, BaseException):
                logger.warning("[IntercityBus] cityCode=%s 터미널 조회 실패: %s", code, result)
                continue
            terminals.extend(result)

        if not terminals:
            logger.warning("[IntercityBus] 터미널 데이터를 가져오지 못했습니다.")
            return []

        if self._repository is not None:
            await asyncio.to_thread(self._repository.save_terminals, terminals)

        logger.info(f"[IntercityBus] 터미널 동기화 완료: {len(terminals)}개")
        return terminals

    async def _fetch_terminals(self, city_code: str, city_name: str) -> List[TerminalData]:
        """도시 하나의 터미널 목록. 실패는 예외로 알린다."""
        response = await self._client.get(
            INTERCITY_TERMINAL_LIST_URL,
            params={
                "serviceKey": self._data_go_kr_key,
                "cityCode": city_code,
                "_type": "json",
                "numOfRows": "200",
            },
            timeout=self._timeout,
        )
        response.raise_for_status()

        terminals = []
        for item in _response_items(response.json()):
            terminal_id = str(item.get("terminalId") or "")
            terminal_nm = str(item.get("terminalNm") or "")
            if not terminal_id or not terminal_nm:
                continue
            terminals.append(TerminalData(
                terminal_id=terminal_id,
                terminal_nm=terminal_nm,
                normalized_nm=normalize_terminal_name(terminal_nm),
                city_code=city_code,
                city_name=str(item.get("cityName") or city_name),
            ))
        return terminals

    async def find_terminal_by_name(self, name: str) -> Optional[str]:
        """터미널 이름으로 terminalId 를 찾는다. 실패 시 None."""
        if not name:
            return None

        cached = self.terminal_name_cache.get(name)
        if cached is not None:
            return cached or None

        await self.ensure_terminals_loaded()
        if not self._terminals:
            # 목록 로드 실패는 캐시하지 않는다
            return None

        found = match_terminal(self._terminals, name)
        terminal_id = found.terminal_id if found else None
        self.terminal_name_cache.set(name, terminal_id or _NOT_FOUND)

        if terminal_id is None:
            logger.warning('[IntercityBus] 터미널 매칭 실패: "%s"', name)
        return terminal_id

    # ========================================================================
    # 시간표
    # ========================================================================

    async def get_schedules(
        self,
        dep_terminal_id: str,
        arr_terminal_id: str,
        date: Optional[datetime] = None,
    ) -> List[ParsedSchedule]:
        """
        하루치 시간표 (출발 시각 오름차순).
        빈 결과도 캐시하고, API 실패는 캐시하지 않는다.
        """
        date_key = korea_date_string(date)
        cache_key = f"{dep_terminal_id}:{arr_terminal_id}:{date_key}"

        cached = self.schedule_cache.get(cache_key)
        if cached is not None and cached[0] == date_key:
            return cached[1]

        # 지난 날짜 항목 정리
        purged = self.schedule_cache.purge(lambda _key, entry: entry[0] != date_key)
        if purged:
            logger.debug("[IntercityBus] 지난 시간표 캐시 %d개 정리", purged)

        try:
            response = await self._client.get(
                INTERCITY_SCHEDULE_URL,
                params={
                    "serviceKey": self._data_go_kr_key,
                    "depTerminalId": dep_terminal_id,
                    "arrTerminalId": arr_terminal_id,
                    "depPlandTime": date_key,
                    "_type": "json",
                    "numOfRows": "200",
                },
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.error("[IntercityBus] 시간표 API 타임아웃")
            return []
        except httpx.HTTPStatusError as e:
            logger.error(f"[IntercityBus] 시간표 API HTTP 실패: {e.response.status_code}")
            return []
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[IntercityBus] 시간표 조회 실패: {e}")
            return []

        schedules = [
            parsed for parsed in (parse_schedule_item(i) for i in _response_items(data))
            if parsed is not None
        ]
        schedules.sort(key=lambda s: s.dep_time_raw)

        self.schedule_cache.set(cache_key, (date_key, schedules))
        return schedules

    async def get_upcoming_departures(
        self,
        start_station: str,
        end_station: str,
        count: int = INTERCITY_DEPARTURE_COUNT,
        now: Optional[datetime] = None,
    ) -> List[IntercityDeparture]:
        """
        현재 시각 이후 다음 count 개의 출발 정보.

        Args:
            start_station: 출발 터미널 이름 (예: "동서울")
            end_station: 도착 터미널 이름 (예: "인천")
            count: 최대 반환 개수
            now: 기준 시각 (기본: 현재 KST)
        """
        if count < 1:
            return []

        dep_terminal_id, arr_terminal_id = await asyncio.gather(
            self.find_terminal_by_name(start_station),
            self.find_terminal_by_name(end_station),
        )
        if not dep_terminal_id or not arr_terminal_id:
            return []

        now = now or now_kst()
        schedules = await self.get_schedules(dep_terminal_id, arr_terminal_id, now)
        if not schedules:
            return []

        current_time_str = korea_time_string(now)
        current_minutes = minutes_since_midnight(now)

        upcoming: List[IntercityDeparture] = []
        for schedule in schedules:
            # 같은 분에 출발하는 버스는 이미 떠난 것으로 본다
            if schedule.dep_time_raw <= current_time_str:
                continue

            dep_minutes = int(schedule.dep_time_raw[:2]) * 60 + int(schedule.dep_time_raw[2:4])
            upcoming.append(IntercityDeparture(
                departure_time=schedule.dep_time,
                arrival_time=schedule.arr_time,
                wait_minutes=dep_minutes - current_minutes,
                grade_nm=schedule.grade_nm,
                charge=schedule.charge,
            ))
            if len(upcoming) >= count:
                break

        return upcoming
