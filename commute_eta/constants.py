# commute_eta/constants.py
"""
외부 API 엔드포인트 및 ETA 계산 상수
"""

# ============================================================================
# 외부 API 엔드포인트
# ============================================================================

# 서울 버스 도착 정보 (XML)
SEOUL_BUS_ARRIVAL_URL = "http://ws.bus.go.kr/api/rest/stationinfo/getStationByUid"

# 경기도 정류소 검색 / 버스 도착 정보 (JSON)
GYEONGGI_STATION_SEARCH_URL = (
    "https://apis.data.go.kr/6410000/busstationservice/v2/getBusStationListv2"
)
GYEONGGI_BUS_ARRIVAL_URL = (
    "https://apis.data.go.kr/6410000/busarrivalservice/v2/getBusArrivalListv2"
)

# 서울 지하철 실시간 도착 정보 (키/역명은 path 로 전달)
SUBWAY_ARRIVAL_URL_TEMPLATE = (
    "http://swopenAPI.seoul.go.kr/api/subway/{key}/json/realtimeStationArrival/0/10/{station}"
)

# 시외버스 터미널 목록 / 시간표
INTERCITY_TERMINAL_LIST_URL = (
    "http://apis.data.go.kr/1613000/SuburbsBusInfoService/getSuberbsBusTrminlList"
)
INTERCITY_SCHEDULE_URL = (
    "http://apis.data.go.kr/1613000/SuburbsBusInfoService/getStrtpntAlocFndSuberbsBusInfo"
)

# ============================================================================
# HTTP / 캐시
# ============================================================================

HTTP_TIMEOUT = 10.0               # 외부 API 호출 타임아웃 (초)
ARRIVAL_CACHE_TTL_SEC = 20        # 실시간 도착 정보 캐시 TTL
ARRIVAL_CACHE_MAX_ENTRIES = 2048
GYEONGGI_STATION_CACHE_TTL_SEC = 24 * 3600
SCHEDULE_CACHE_MAX_ENTRIES = 512
TERMINAL_NAME_CACHE_MAX_ENTRIES = 1024

# ============================================================================
# ETA 계산
# ============================================================================

# 평균 배차 간격 (초) - 실시간 정보가 없을 때 대기 시간 추정치
AVERAGE_HEADWAY = {
    "bus": 600,     # 10분
    "subway": 300,  # 5분
}

# 운행 시간 외 (KST): 01:00 <= hour < 05:00
OFF_HOURS_START_HOUR = 1
OFF_HOURS_END_HOUR = 5

# 이 시각 이전이면 출근 경로 우선, 이후면 퇴근 경로 우선
COMMUTE_PRIORITY_CUTOFF_HOUR = 13

INTERCITY_DEPARTURE_COUNT = 2
MAX_ARRIVALS_PER_LINE = 2

TRANSIT_LEG_TYPES = ("bus", "subway")

# ============================================================================
# 표시 문구
# ============================================================================

NO_REALTIME_MESSAGE = "실시간 정보 없음"
NO_SCHEDULE_MESSAGE = "배차 정보 없음"
NO_INFO_MESSAGE = "정보 없음"
DEFAULT_INTERCITY_LINE_NAME = "시외버스"
