# commute_eta/time_utils.py
from __future__ import annotations

from datetime import datetime, timezone

from zoneinfo import ZoneInfo

from .constants import OFF_HOURS_END_HOUR, OFF_HOURS_START_HOUR

KST = ZoneInfo("Asia/Seoul")


# ============================================================================
# 시간계 유틸리티
# ============================================================================

def now_kst() -> datetime:
    return datetime.now(KST)


def to_kst(dt: datetime) -> datetime:
    """
    KST aware datetime 으로 변환한다.
    naive datetime 은 이미 KST 라고 간주한다.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=KST)
    return dt.astimezone(KST)


def get_korea_hour(dt: datetime | None = None) -> int:
    return to_kst(dt or now_kst()).hour


def is_off_hours(dt: datetime | None = None) -> bool:
    """
    운행 시간 외(새벽 1시 ~ 5시 KST)인지 판별한다.
    시계만 보는 순수 함수이며 외부 호출은 하지 않는다.
    """
    hour = get_korea_hour(dt)
    return OFF_HOURS_START_HOUR <= hour < OFF_HOURS_END_HOUR


def korea_date_string(dt: datetime | None = None) -> str:
    """YYYYMMDD (KST)"""
    return to_kst(dt or now_kst()).strftime("%Y%m%d")


def korea_time_string(dt: datetime | None = None) -> str:
    """HHmm (KST). 시간표 depTimeRaw 와 문자열 비교에 사용한다."""
    return to_kst(dt or now_kst()).strftime("%H%M")


def minutes_since_midnight(dt: datetime | None = None) -> int:
    kst = to_kst(dt or now_kst())
    return kst.hour * 60 + kst.minute


def to_iso_utc(dt: datetime) -> str:
    """2026-01-20T08:15:30.000Z 형식"""
    utc = to_kst(dt).astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"
