"""ETA 계산 엔진 테스트"""
from datetime import datetime, timedelta

import pytest

from commute_eta.errors import ConfigurationError
from commute_eta.eta_calculator import ETACalculator, route_type_priority
from commute_eta.intercity_bus import IntercityBusService
from commute_eta.models import RouteLeg, SavedRoute
from commute_eta.realtime_transit import RealtimeTransitService
from commute_eta.time_utils import KST, to_iso_utc
from fakes import MORNING, NIGHT, run, seed_intercity, seoul_bus_item, subway_item

AFTERNOON = datetime(2026, 1, 20, 15, 0, tzinfo=KST)

SUBWAY_LEG = RouteLeg(
    type="subway", line_names=("2호선",), start_station="강남", end_station="잠실새내",
)
WALK_LEG = RouteLeg(type="walk", section_time=4)
BUS_LEG = RouteLeg(
    type="bus", line_names=("146",), start_station="강남역", start_station_id="23-285",
)
INTERCITY_LEG = RouteLeg(
    type="bus", line_names=("동서울-인천",), start_station="동서울", end_station="인천",
    leg_sub_type="intercity_bus",
)


def make_route(route_id, legs, total_time=40, route_type="other", **kwargs):
    return SavedRoute(
        id=route_id, alias=f"경로 {route_id}", total_time=total_time,
        legs=tuple(legs), route_type=route_type, **kwargs,
    )


def with_calculator(make_client, settings, action, route_store=None):
    async def go():
        async with make_client() as client:
            calculator = ETACalculator(
                RealtimeTransitService(client, settings),
                IntercityBusService(client, settings),
                route_store,
            )
            result = await action(calculator)
            await calculator.wait_for_background_tasks()
            return result
    return run(go())


def calculate(make_client, settings, routes, now=MORNING):
    return with_calculator(make_client, settings, lambda c: c.calculate_etas(routes, now))


def test_route_type_priority_switches_at_13():
    assert route_type_priority(12)["commute"] == 0
    assert route_type_priority(13)["return"] == 0


def test_off_hours_returns_empty_result_without_calls(upstream, make_client, settings):
    route = make_route("r1", [SUBWAY_LEG, BUS_LEG, INTERCITY_LEG], total_time=55)

    (result,) = calculate(make_client, settings, [route], now=NIGHT)

    assert result.estimated_arrival == ""
    assert result.wait_time == 0
    assert result.travel_time == 55
    assert result.is_estimate is True
    assert result.leg_arrivals == []
    assert upstream.requests == []


def test_wait_time_from_first_leg_realtime(upstream, make_client, settings):
    upstream.subway["강남"] = [subway_item("잠실새내", "외선", 180)]
    upstream.seoul_bus["23285"] = [seoul_bus_item("146", 400)]
    route = make_route("r1", [WALK_LEG, SUBWAY_LEG, BUS_LEG], total_time=40)

    (result,) = calculate(make_client, settings, [route])

    assert result.wait_time == 180
    assert result.is_estimate is False
    assert result.estimated_arrival == to_iso_utc(MORNING + timedelta(seconds=180, minutes=40))
    assert result.estimated_arrival == "2026-01-19T23:43:00.000Z"
    assert [(e.type, e.arrival_time) for e in result.leg_arrivals] == [("subway", 180), ("bus", 400)]
    assert result.leg_arrivals[0].destination == "잠실새내"


def test_missing_realtime_uses_headway_placeholders(upstream, make_client, settings):
    leg = RouteLeg(
        type="bus", line_names=("146", "360"), start_station="강남역", start_station_id="23-285",
    )
    route = make_route("r1", [leg])

    (result,) = calculate(make_client, settings, [route])

    assert [(e.line_name, e.arrival_time, e.arrival_message) for e in result.leg_arrivals] == [
        ("146", 600, "실시간 정보 없음"),
        ("360", 600, "실시간 정보 없음"),
    ]
    assert result.wait_time == 600
    assert result.is_estimate is True


def test_lines_without_realtime_get_placeholders_next_to_live_lines(upstream, make_client, settings):
    upstream.seoul_bus["23285"] = [seoul_bus_item("146", 400)]
    leg = RouteLeg(
        type="bus", line_names=("146", "360"), start_station="강남역", start_station_id="23-285",
    )

    (result,) = calculate(make_client, settings, [make_route("r1", [leg])])

    assert [(e.line_name, e.arrival_time) for e in result.leg_arrivals] == [
        ("146", 400), ("360", 600),
    ]
    assert result.leg_arrivals[0].arrival_message != "실시간 정보 없음"
    assert result.leg_arrivals[1].arrival_message == "실시간 정보 없음"
    assert result.wait_time == 400
    assert result.is_estimate is False


def test_first_subway_leg_without_data_estimates_subway_headway(upstream, make_client, settings):
    (result,) = calculate(make_client, settings, [make_route("r1", [SUBWAY_LEG])])

    assert result.wait_time == 300
    assert result.is_estimate is True


def test_later_city_leg_with_realtime_supplies_wait_time(upstream, make_client, settings):
    upstream.seoul_bus["23285"] = [seoul_bus_item("146", 400)]
    route = make_route("r1", [SUBWAY_LEG, BUS_LEG])

    (result,) = calculate(make_client, settings, [route])

    assert result.wait_time == 400
    assert result.is_estimate is False


def test_route_without_transit_legs(upstream, make_client, settings):
    (result,) = calculate(make_client, settings, [make_route("r1", [WALK_LEG], total_time=12)])

    assert result.wait_time == 600
    assert result.is_estimate is True
    assert result.leg_arrivals == []
    assert upstream.requests == []


def test_intercity_first_leg_uses_schedule(upstream, make_client, settings):
    seed_intercity(upstream)
    route = make_route("r1", [INTERCITY_LEG, SUBWAY_LEG], total_time=90)

    (result,) = calculate(make_client, settings, [route])

    schedule_entries = [e for e in result.leg_arrivals if e.is_schedule]
    assert [(e.arrival_message, e.arrival_time) for e in schedule_entries] == [
        ("08:30 출발 (30분 후)", 1800),
        ("09:15 출발 (75분 후)", 4500),
    ]
    assert schedule_entries[0].line_name == "동서울-인천"
    assert schedule_entries[0].to_dict()["isSchedule"] is True
    assert result.wait_time == 1800
    assert result.is_estimate is False


def test_intercity_leg_without_schedule(upstream, make_client, settings):
    seed_intercity(upstream, schedules=[])
    leg = RouteLeg(type="bus", start_station="동서울", end_station="인천", leg_sub_type="express_bus")

    (result,) = calculate(make_client, settings, [make_route("r1", [leg])])

    assert [(e.line_name, e.arrival_message, e.arrival_time) for e in result.leg_arrivals] == [
        ("시외버스", "배차 정보 없음", 600),
    ]
    assert result.wait_time == 600
    assert result.is_estimate is True


@pytest.mark.parametrize("failing", [
    [],
    ["realtimeStationArrival"],
    ["getStationByUid", "getBusStationListv2"],
    ["getStrtpntAlocFndSuberbsBusInfo"],
    ["realtimeStationArrival", "getStationByUid", "getBusStationListv2", "getSuberbsBusTrminlList"],
])
def test_leg_arrivals_follow_leg_order_whatever_fails(upstream, make_client, settings, failing):
    upstream.subway["강남"] = [subway_item("잠실새내", "외선", 180)]
    upstream.seoul_bus["23285"] = [seoul_bus_item("146", 400)]
    seed_intercity(upstream)
    for fragment in failing:
        upstream.fail[fragment] = 500
    route = make_route("r1", [SUBWAY_LEG, WALK_LEG, BUS_LEG, INTERCITY_LEG])
    leg_position = {"강남": 0, "강남역": 2, "동서울": 3}

    (result,) = calculate(make_client, settings, [route])

    positions = [leg_position[e.start_station] for e in result.leg_arrivals]
    assert positions == sorted(positions)
    assert set(positions) == {0, 2, 3}
    assert result.estimated_arrival


def test_shared_legs_are_queried_once_per_key(upstream, make_client, settings):
    upstream.seoul_bus["23285"] = [seoul_bus_item("146", 400)]
    upstream.seoul_bus["23290"] = [seoul_bus_item("146", 200)]
    routes = [
        make_route("r1", [RouteLeg(type="bus", id="r1-0", line_names=("146",), start_station_id="23-285")]),
        make_route("r2", [WALK_LEG, RouteLeg(type="bus", id="r2-1", line_names=("146",), start_station_id="23-285")]),
        make_route("r3", [RouteLeg(type="bus", id="r3-0", line_names=("146",), start_station_id="23-290")]),
    ]

    results = calculate(make_client, settings, routes)

    assert [r.route_id for r in results] == ["r1", "r2", "r3"]
    assert [r.wait_time for r in results] == [400, 400, 200]
    assert upstream.count("getStationByUid") == 2


def test_calculate_eta_single_route(upstream, make_client, settings):
    upstream.seoul_bus["23285"] = [seoul_bus_item("146", 400)]
    route = make_route("r1", [BUS_LEG], route_type="commute")

    result = with_calculator(make_client, settings, lambda c: c.calculate_eta(route, MORNING))

    assert result.route_id == "r1"
    assert result.to_dict()["routeType"] == "commute"
    assert result.wait_time == 400


# ============================================================================
# Route Store 연동
# ============================================================================

def test_dashboard_sorted_by_route_type_and_records_history(
    upstream, make_client, settings, route_store
):
    for route_id, route_type in (("home", "return"), ("work", "commute"), ("gym", "other")):
        route_store.add_route(make_route(route_id, [WALK_LEG], total_time=20,
                                         route_type=route_type, user_id="u1"))

    morning = with_calculator(
        make_client, settings, lambda c: c.calculate_all_etas("u1", MORNING), route_store,
    )
    afternoon = with_calculator(
        make_client, settings, lambda c: c.calculate_all_etas("u1", AFTERNOON), route_store,
    )

    assert [r.route_type for r in morning.routes] == ["commute", "other", "return"]
    assert [r.route_type for r in afternoon.routes] == ["return", "other", "commute"]
    assert morning.last_updated == "2026-01-19T23:00:00.000Z"

    records = route_store.get_eta_records("work")
    assert len(records) == 2
    assert records[0].total_eta == 30
    assert records[0].wait_time == 600
    assert records[0].is_estimate is True


def test_dashboard_off_hours_records_nothing(upstream, make_client, settings, route_store):
    route_store.add_route(make_route("work", [BUS_LEG], user_id="u1"))

    dashboard = with_calculator(
        make_client, settings, lambda c: c.calculate_all_etas("u1", NIGHT), route_store,
    )

    assert dashboard.routes[0].estimated_arrival == ""
    assert route_store.get_eta_records("work") == []
    assert upstream.requests == []


def test_resolved_gyeonggi_station_is_saved_for_every_matching_leg(
    upstream, make_client, settings, route_store
):
    upstream.gyeonggi_stations["12345"] = [
        {"stationId": "200000001", "mobileNo": "12345", "stationName": "수원역"},
    ]
    upstream.gyeonggi_arrivals["200000001"] = [
        {"routeName": "7770", "predictTime1": 5, "predictTimeSec1": 280, "flag": "PASS"},
    ]
    leg = RouteLeg(type="bus", line_names=("7770",), start_station="수원역", start_station_id="12345")
    route_store.add_route(make_route("a", [leg], user_id="u1"))
    route_store.add_route(make_route("b", [WALK_LEG, leg], user_id="u1"))

    dashboard = with_calculator(
        make_client, settings, lambda c: c.calculate_all_etas("u1", MORNING), route_store,
    )

    assert [r.wait_time for r in dashboard.routes] == [280, 280]
    assert upstream.count("getBusStationListv2") == 1
    assert route_store.get_route("a").legs[0].gyeonggi_station_id == "200000001"
    assert route_store.get_route("b").legs[1].gyeonggi_station_id == "200000001"


def test_calculate_all_etas_requires_route_store(make_client, settings):
    with pytest.raises(ConfigurationError):
        with_calculator(make_client, settings, lambda c: c.calculate_all_etas("u1", MORNING))
