"""실시간 도착 정보 클라이언트 / 구간 집계 테스트"""
import pytest

from commute_eta.errors import ConfigurationError
from commute_eta.models import ArrivalInfo, ResolvedStationUpdate, RouteLeg
from commute_eta.realtime_transit import (
    RealtimeTransitService,
    is_seoul_stop_code,
    matches_line_names,
    sort_and_cap_arrivals,
    unique_city_leg_key,
)
from commute_eta.settings import Settings
from fakes import run, seoul_bus_item, seoul_bus_xml, subway_item

GANGNAM_SUBWAY_LEG = RouteLeg(
    type="subway", line_names=("2호선",), start_station="강남", end_station="잠실새내",
)
GANGNAM_BUS_LEG = RouteLeg(
    type="bus", line_names=("146",), start_station="강남역", start_station_id="23-285",
)


def gyeonggi_station(station_id, mobile_no, name):
    return {"stationId": station_id, "mobileNo": mobile_no, "stationName": name}


def gyeonggi_arrival(route_name, minutes1, seconds1=None, minutes2="", seconds2="", flag="PASS"):
    return {
        "routeName": route_name,
        "predictTime1": minutes1,
        "predictTimeSec1": seconds1 if seconds1 is not None else "",
        "predictTime2": minutes2,
        "predictTimeSec2": seconds2,
        "locationNo1": 2,
        "locationNo2": 7 if minutes2 != "" else "",
        "flag": flag,
    }


def fetch(make_client, settings, legs, times=1, **kwargs):
    """같은 서비스 인스턴스로 times 번 조회한 결과 목록"""
    async def go():
        async with make_client() as client:
            service = RealtimeTransitService(client, settings, **kwargs)
            return [await service.get_all_transit_arrivals(legs) for _ in range(times)]
    return run(go())


def summary(leg_arrivals):
    return [(a.line_name, a.arrival_time) for a in leg_arrivals.arrivals]


# ============================================================================
# 헬퍼
# ============================================================================

def test_is_seoul_stop_code():
    assert is_seoul_stop_code("23-285") is True
    assert is_seoul_stop_code("12345") is False


def test_matches_line_names_is_case_insensitive_exact():
    assert matches_line_names("n13", ["N13"]) is True
    assert matches_line_names("146", ["1460"]) is False


def test_sort_and_cap_arrivals_puts_zero_first_and_caps_per_line():
    def arrival(line, seconds):
        return ArrivalInfo(
            station_name="강남역", line_name=line, direction="",
            arrival_time=seconds, arrival_message="",
        )

    arrivals = [arrival("146", 300), arrival("146", 0), arrival("360", 500),
                arrival("146", 60), arrival("360", 200)]

    result = sort_and_cap_arrivals(arrivals)

    assert [(a.line_name, a.arrival_time) for a in result] == [
        ("146", 0), ("146", 60), ("360", 200), ("360", 500),
    ]


def test_unique_city_leg_key_ignores_leg_identity_and_line_order():
    a = RouteLeg(type="bus", id="r1-0", line_names=("146", "N13"), start_station_id="23-285")
    b = RouteLeg(type="bus", id="r2-3", line_names=("n13", "146"), start_station_id="23-285")
    assert unique_city_leg_key(a) == unique_city_leg_key(b)

    to_seocho = RouteLeg(
        type="subway", line_names=("2호선",), start_station="강남역", end_station="서초",
    )
    assert unique_city_leg_key(GANGNAM_SUBWAY_LEG) != unique_city_leg_key(to_seocho)


# ============================================================================
# 서울 버스
# ============================================================================

def test_parse_seoul_bus_xml_skips_finished_and_missing_arrivals():
    xml = seoul_bus_xml([
        seoul_bus_item("146", 120, 600),
        seoul_bus_item("360", 300),
        seoul_bus_item("N13", 0, arrmsg1="운행종료", arrmsg2="운행종료"),
    ])

    arrivals = RealtimeTransitService._parse_seoul_bus_xml(xml)

    assert [(a.line_name, a.arrival_time) for a in arrivals] == [
        ("146", 120), ("146", 600), ("360", 300),
    ]
    first = arrivals[0]
    assert first.station_name == "강남역"
    assert first.direction == "시청"
    assert first.arrival_message == "2분후[2번째 전]"
    assert first.remaining_stops == 10
    assert first.vehicle_type == "버스"


def test_parse_seoul_bus_xml_error_header_or_broken_xml():
    assert RealtimeTransitService._parse_seoul_bus_xml(seoul_bus_xml([], header_cd="8")) is None
    assert RealtimeTransitService._parse_seoul_bus_xml("<ServiceResult>") is None


def test_seoul_bus_leg_filters_by_line_names(upstream, make_client, settings):
    upstream.seoul_bus["23285"] = [
        seoul_bus_item("146", 400, 900),
        seoul_bus_item("360", 60, 500),
    ]

    (result,) = fetch(make_client, settings, [GANGNAM_BUS_LEG])

    assert len(result.legs) == 1
    assert result.legs[0].leg_index == 0
    assert summary(result.legs[0]) == [("146", 400), ("146", 900)]
    assert upstream.requests[0].url.params["arsId"] == "23285"


def test_seoul_stop_without_requested_line_falls_through_to_gyeonggi(
    upstream, make_client, settings
):
    upstream.seoul_bus["23285"] = [seoul_bus_item("146", 400)]
    upstream.gyeonggi_stations["23-285"] = [gyeonggi_station(228000123, "23-285", "강남역")]
    upstream.gyeonggi_arrivals["228000123"] = [gyeonggi_arrival("5100", 4, 230)]
    leg = RouteLeg(type="bus", line_names=("5100",), start_station="강남역", start_station_id="23-285")

    (result,) = fetch(make_client, settings, [leg])

    assert summary(result.legs[0]) == [("5100", 230)]
    assert upstream.count("getStationByUid") == 1
    assert upstream.count("getBusArrivalListv2") == 1


def test_bus_leg_without_stop_code_is_skipped(upstream, make_client, settings):
    leg = RouteLeg(type="bus", line_names=("146",), start_station="강남역")

    (result,) = fetch(make_client, settings, [leg])

    assert result.legs == []
    assert upstream.requests == []


# ============================================================================
# 경기도 버스
# ============================================================================

def test_gyeonggi_leg_resolves_station_and_reports_update(upstream, make_client, settings):
    upstream.gyeonggi_stations["12345"] = [gyeonggi_station("200000001", "12345", "수원역")]
    upstream.gyeonggi_arrivals["200000001"] = [
        gyeonggi_arrival("마을2-1", 3, 170, minutes2=12),
        gyeonggi_arrival("7770", 5, 280, flag="STOP"),
    ]
    leg = RouteLeg(
        type="bus", id="leg-1", line_names=("2-1",),
        start_station="수원역", start_station_id="12345",
    )

    (result,) = fetch(make_client, settings, [leg])

    arrivals = result.legs[0].arrivals
    assert [(a.line_name, a.arrival_time, a.remaining_stops) for a in arrivals] == [
        ("2-1", 170, 2), ("2-1", 720, 7),
    ]
    assert arrivals[1].arrival_message == "12분 후"
    assert result.resolved_station_updates == [
        ResolvedStationUpdate(leg_id="leg-1", station_id="200000001")
    ]
    assert upstream.count("getBusStationListv2") == 1


def test_gyeonggi_leg_with_stored_station_id_skips_search(upstream, make_client, settings):
    upstream.gyeonggi_arrivals["200000001"] = [gyeonggi_arrival("7770", 5, 280)]
    leg = RouteLeg(
        type="bus", id="leg-1", line_names=("7770",), start_station_id="12345",
        gyeonggi_station_id="200000001",
    )

    (result,) = fetch(make_client, settings, [leg])

    assert summary(result.legs[0]) == [("7770", 280)]
    assert result.resolved_station_updates == []
    assert upstream.count("getBusStationListv2") == 0


def test_ambiguous_gyeonggi_stop_is_unresolved_and_negative_cached(
    upstream, make_client, settings
):
    upstream.gyeonggi_stations["12345"] = [
        gyeonggi_station("200000001", "12345", "장안구청"),
        gyeonggi_station("200000002", "12345", "팔달문"),
    ]
    leg = RouteLeg(
        type="bus", id="leg-1", line_names=("7770",),
        start_station="수원역", start_station_id="12345",
    )

    first, second = fetch(make_client, settings, [leg], times=2)

    assert first.legs == [] and second.legs == []
    assert first.resolved_station_updates == []
    assert upstream.count("getBusStationListv2") == 1
    assert upstream.count("getBusArrivalListv2") == 0


def test_duplicate_mobile_no_resolved_by_station_name(upstream, make_client, settings):
    upstream.gyeonggi_stations["12345"] = [
        gyeonggi_station("200000001", "12345", "장안구청"),
        gyeonggi_station("200000002", "12345", "수원역 환승센터"),
    ]

    async def go():
        async with make_client() as client:
            service = RealtimeTransitService(client, settings)
            return await service.resolve_gyeonggi_station_id("12345", "수원역환승센터")

    assert run(go()) == "200000002"


# ============================================================================
# 지하철
# ============================================================================

def test_subway_leg_keeps_only_trains_that_pass_destination(upstream, make_client, settings):
    upstream.subway["강남"] = [
        subway_item("잠실새내", "외선", 300),
        subway_item("신림", "외선", 60),
        subway_item("성수", "내선", 120),
    ]

    (result,) = fetch(make_client, settings, [GANGNAM_SUBWAY_LEG])

    arrivals = result.legs[0].arrivals
    assert [(a.destination, a.arrival_time) for a in arrivals] == [("성수", 120), ("잠실새내", 300)]
    assert arrivals[0].arrival_message == "2분 후"
    assert arrivals[0].line_name == "2호선"
    assert arrivals[0].direction == "성수행"


def test_subway_leg_with_no_matching_direction_is_omitted(upstream, make_client, settings):
    upstream.subway["강남"] = [subway_item("신림", "외선", 60)]

    (result,) = fetch(make_client, settings, [GANGNAM_SUBWAY_LEG])

    assert result.legs == []


def test_subway_station_is_queried_once_for_several_legs(upstream, make_client, settings):
    upstream.subway["강남"] = [subway_item("잠실새내", "외선", 300), subway_item("신림", "외선", 60)]
    to_seocho = RouteLeg(
        type="subway", line_names=("2호선",), start_station="강남", end_station="서초",
    )

    (result,) = fetch(make_client, settings, [GANGNAM_SUBWAY_LEG, to_seocho])

    assert sorted(r.leg_index for r in result.legs) == [0, 1]
    assert upstream.count("realtimeStationArrival") == 1


def test_repeated_queries_within_ttl_hit_cache(upstream, make_client, settings):
    upstream.subway["강남"] = [subway_item("잠실새내", "외선", 300)]
    upstream.seoul_bus["23285"] = [seoul_bus_item("146", 400)]

    first, second = fetch(make_client, settings, [GANGNAM_SUBWAY_LEG, GANGNAM_BUS_LEG], times=2)

    assert [summary(r) for r in first.legs] == [summary(r) for r in second.legs]
    assert upstream.count("realtimeStationArrival") == 1
    assert upstream.count("getStationByUid") == 1


def test_empty_subway_result_is_cached(upstream, make_client, settings):
    first, second = fetch(make_client, settings, [GANGNAM_SUBWAY_LEG], times=2)

    assert first.legs == [] and second.legs == []
    assert upstream.count("realtimeStationArrival") == 1


def test_subway_http_failure_is_not_cached(upstream, make_client, settings):
    upstream.fail["realtimeStationArrival"] = 500

    first, second = fetch(make_client, settings, [GANGNAM_SUBWAY_LEG], times=2)

    assert first.legs == [] and second.legs == []
    assert upstream.count("realtimeStationArrival") == 2


# ============================================================================
# 구간 집계
# ============================================================================

def test_one_failing_leg_does_not_drop_the_others(upstream, make_client, settings, monkeypatch):
    upstream.subway["강남"] = [subway_item("잠실새내", "외선", 300)]
    upstream.seoul_bus["23285"] = [seoul_bus_item("146", 400)]

    async def go():
        async with make_client() as client:
            service = RealtimeTransitService(client, settings)

            def boom(*args, **kwargs):
                raise RuntimeError("broken payload")

            monkeypatch.setattr(service, "filter_subway_arrivals", boom)
            return await service.get_all_transit_arrivals([GANGNAM_SUBWAY_LEG, GANGNAM_BUS_LEG])

    result = run(go())

    assert [r.leg_index for r in result.legs] == [1]
    assert summary(result.legs[0]) == [("146", 400)]


def test_walk_only_legs_make_no_requests(upstream, make_client, settings):
    (result,) = fetch(make_client, settings, [RouteLeg(type="walk", section_time=5)])

    assert result.legs == []
    assert upstream.requests == []


def test_missing_api_key_fails_before_any_request(upstream, make_client):
    async def go():
        async with make_client() as client:
            RealtimeTransitService(client, Settings(seoul_opendata_api_key="k"))

    with pytest.raises(ConfigurationError) as exc_info:
        run(go())

    assert exc_info.value.code == "CONFIGURATION_ERROR"
    assert upstream.requests == []
