from datetime import datetime, timedelta, timezone

from commute_eta.models import ETAResult, RouteLeg, SavedRoute, TerminalData

CREATED = datetime(2026, 1, 1, tzinfo=timezone.utc)


def route(route_id, user_id="u1", is_default=False, days=0, legs=(), **kwargs):
    return SavedRoute(
        id=route_id, alias=route_id, total_time=30, user_id=user_id,
        is_default=is_default, created_at=CREATED + timedelta(days=days),
        legs=legs or (RouteLeg(type="walk", section_time=5),), **kwargs,
    )


def eta(route_id, wait_time, travel_time, estimated="2026-01-19T23:43:00.000Z"):
    return ETAResult(
        estimated_arrival=estimated, wait_time=wait_time, travel_time=travel_time,
        is_estimate=False, route_id=route_id, route_alias=route_id, route_type="other",
    )


def test_routes_ordered_default_first_then_newest(route_store):
    route_store.add_route(route("old", days=0))
    route_store.add_route(route("new", days=2))
    route_store.add_route(route("default", is_default=True, days=1))
    route_store.add_route(route("other-user", user_id="u2", days=3))

    assert [r.id for r in route_store.get_routes("u1")] == ["default", "new", "old"]


def test_legs_round_trip_in_order(route_store):
    legs = (
        RouteLeg(type="walk", section_time=3),
        RouteLeg(type="bus", line_names=("146", "360"), start_station="강남역",
                 start_station_id="23-285", section_time=20),
        RouteLeg(type="subway", line_names=("2호선",), start_station="강남", end_station="잠실새내"),
    )
    route_store.add_route(route("r1", legs=legs, route_type="commute", route_source="in_local"))

    loaded = route_store.get_route("r1")

    assert [leg.type for leg in loaded.legs] == ["walk", "bus", "subway"]
    assert loaded.legs[1].line_names == ("146", "360")
    assert loaded.legs[1].id == "r1-1"
    assert loaded.route_type == "commute"
    assert loaded.user_id == "u1"
    assert route_store.get_route("missing") is None


def test_legacy_intercity_leg_is_tagged_on_load(route_store):
    legs = (RouteLeg(type="bus", line_names=("시외버스",), start_station="동서울", end_station="인천"),)
    route_store.add_route(route("r1", legs=legs, route_source="inter_local"))

    assert route_store.get_route("r1").legs[0].leg_sub_type == "intercity_bus"


def test_update_gyeonggi_station_id(route_store):
    legs = (RouteLeg(type="bus", id="leg-1", start_station_id="12345"),)
    route_store.add_route(route("r1", legs=legs))

    route_store.update_gyeonggi_station_id("leg-1", "200000001")
    route_store.update_gyeonggi_station_id("missing", "1")

    assert route_store.get_route("r1").legs[0].gyeonggi_station_id == "200000001"


def test_save_eta_records_skips_off_hours_results(route_store):
    route_store.add_route(route("r1"))
    recorded_at = datetime(2026, 1, 19, 23, 0, tzinfo=timezone.utc)

    route_store.save_eta_records([eta("r1", 180, 40), eta("r1", 0, 40, estimated="")], recorded_at)

    records = route_store.get_eta_records("r1")
    assert len(records) == 1
    assert records[0].total_eta == 43
    assert records[0].wait_time == 180
    assert records[0].travel_time == 40


def test_terminal_store_skips_duplicate_ids(terminal_store):
    terminal_store.save_terminals([
        TerminalData("NAEK032", "동서울종합터미널", "동서울", "11", "서울특별시"),
        TerminalData("NAEK032", "동서울종합터미널", "동서울", "11", "서울특별시"),
    ])
    terminal_store.save_terminals([
        TerminalData("NAEK032", "동서울종합터미널", "동서울", "11", "서울특별시"),
        TerminalData("NAI3214401", "인천종합터미널", "인천", "23", "인천광역시"),
    ])

    terminals = sorted(terminal_store.load_terminals(), key=lambda t: t.terminal_id)

    assert [(t.terminal_id, t.normalized_nm) for t in terminals] == [
        ("NAEK032", "동서울"), ("NAI3214401", "인천"),
    ]
