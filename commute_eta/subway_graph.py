# commute_eta/subway_graph.py
"""
지하철 노선 그래프 및 열차 경유 판별

SUBWAY_LINES 로부터 노선별 무방향 인접 그래프를 한 번 구축하고 (이후 변경 없음),
BFS 로 열차(종착역 기준)가 사용자의 하차역을 실제로 지나가는지 검증한다.

판별할 수 없는 경우에는 항상 None / False 를 돌려준다.
반대 방향 열차를 보여주는 것보다 실시간 정보를 생략하는 쪽이 낫다.
"""
from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

from .subway_stations import SUBWAY_LINES, SubwayLineConfig

logger = logging.getLogger(__name__)


def normalize_station_name(name: str) -> str:
    """
    "강남역" → "강남", "잠실 새내" → "잠실새내"
    """
    return re.sub(r"\s+", "", re.sub(r"역$", "", name.strip()))


# ============================================================================
# 그래프 구축
# ============================================================================

@dataclass(frozen=True)
class SubwayGraph:
    """정규화된 역 이름을 노드로 하는 노선 1개의 그래프"""
    adjacency: Mapping[str, Tuple[str, ...]]
    stations: FrozenSet[str]


def build_line_graph(line: SubwayLineConfig) -> SubwayGraph:
    """
    역 순서 테이블로부터 그래프를 만든다.

    - 본선: 연속한 역끼리 연결
    - 순환선: 마지막 역 → 첫 역 연결
    - 분기선: 분기점 → 분기 첫 역, 이후 분기 역끼리 연결
    """
    adjacency: Dict[str, List[str]] = {}

    def ensure_node(name: str) -> str:
        node = normalize_station_name(name)
        adjacency.setdefault(node, [])
        return node

    def add_edge(a: str, b: str) -> None:
        na, nb = ensure_node(a), ensure_node(b)
        if na == nb:
            return
        if nb not in adjacency[na]:
            adjacency[na].append(nb)
        if na not in adjacency[nb]:
            adjacency[nb].append(na)

    for name in line.stations:
        ensure_node(name)
    for a, b in zip(line.stations, line.stations[1:]):
        add_edge(a, b)

    if line.type == "circular" and len(line.stations) > 1:
        add_edge(line.stations[-1], line.stations[0])

    for branch in line.branches:
        if not branch.stations:
            continue
        add_edge(branch.branch_point, branch.stations[0])
        for a, b in zip(branch.stations, branch.stations[1:]):
            add_edge(a, b)

    frozen = {node: tuple(neighbors) for node, neighbors in adjacency.items()}
    return SubwayGraph(
        adjacency=MappingProxyType(frozen),
        stations=frozenset(frozen),
    )


def find_path(graph: SubwayGraph, start: str, goal: str) -> Optional[List[str]]:
    """
    무가중치 BFS 최단 경로. 경로가 없으면 None.
    """
    if start not in graph.adjacency or goal not in graph.adjacency:
        return None
    if start == goal:
        return [start]

    parent: Dict[str, Optional[str]] = {start: None}
    queue = deque([start])

    while queue:
        current = queue.popleft()
        for neighbor in graph.adjacency[current]:
            if neighbor in parent:
                continue
            parent[neighbor] = current
            if neighbor == goal:
                path: List[str] = []
                node: Optional[str] = goal
                while node is not None:
                    path.append(node)
                    node = parent[node]
                path.reverse()
                return path
            queue.append(neighbor)

    return None


# ============================================================================
# 순환선 방향별 경로
# ============================================================================

def directed_circular_path(
    line: SubwayLineConfig,
    start: str,
    terminal: str,
    direction: str,
) -> Optional[List[str]]:
    """
    순환선에서 direction 방향으로 실제로 지나가는 역 순서를 만든다.

    순환선은 양방향 모두 도달 가능하므로 BFS 최단 경로를 쓸 수 없다.
    forward 라벨이면 인덱스 증가(시계방향), 그 외는 인덱스 감소 방향으로 걷는다.
    분기선 역이 끼어 있으면 분기점까지의 본선 경로에 분기 구간을 이어 붙인다.

    Args:
        start, terminal: 정규화된 역 이름
        direction: updnLine 값 ("외선" / "내선")
    """
    main = [normalize_station_name(s) for s in line.stations]
    main_len = len(main)
    is_forward = direction == line.directions.forward
    branches = [
        (normalize_station_name(b.branch_point), [normalize_station_name(s) for s in b.stations])
        for b in line.branches
    ]

    def main_index(station: str) -> int:
        return main.index(station) if station in main else -1

    def branch_info(station: str) -> Optional[Tuple[int, int, str]]:
        # (분기 번호, 분기 내 인덱스, 분기점)
        for b_idx, (branch_point, stations) in enumerate(branches):
            if station in stations:
                return b_idx, stations.index(station), branch_point
        return None

    def walk_main(from_idx: int, to_idx: int) -> List[str]:
        path: List[str] = []
        idx = from_idx
        for _ in range(main_len + 2):
            path.append(main[idx])
            if idx == to_idx and len(path) > 1:
                break
            idx = (idx + 1) % main_len if is_forward else (idx - 1) % main_len
        return path

    def branch_outbound(b_idx: int, up_to: int) -> List[str]:
        # 분기점 다음 역부터 up_to 까지 (분기점 제외)
        return branches[b_idx][1][: up_to + 1]

    start_main = main_index(start)
    terminal_main = main_index(terminal)
    start_branch = branch_info(start) if start_main == -1 else None
    terminal_branch = branch_info(terminal) if terminal_main == -1 else None

    # 1) 둘 다 본선
    if start_main != -1 and terminal_main != -1:
        return walk_main(start_main, terminal_main)

    # 2) 본선 → 분기선
    if start_main != -1 and terminal_branch:
        t_branch, t_idx, t_point = terminal_branch
        point_idx = main_index(t_point)
        if point_idx == -1:
            return None
        return walk_main(start_main, point_idx) + branch_outbound(t_branch, t_idx)

    # 3) 분기선 → 본선
    if start_branch and terminal_main != -1:
        s_branch, s_idx, s_point = start_branch
        point_idx = main_index(s_point)
        if point_idx == -1:
            return None
        inbound = list(reversed(branch_outbound(s_branch, s_idx)))
        return inbound + walk_main(point_idx, terminal_main)

    # 4) 둘 다 분기선
    if start_branch and terminal_branch:
        s_branch, s_idx, s_point = start_branch
        t_branch, t_idx, t_point = terminal_branch
        if s_branch == t_branch:
            stations = branches[s_branch][1]
            if s_idx <= t_idx:
                return stations[s_idx: t_idx + 1]
            return list(reversed(stations[t_idx: s_idx + 1]))

        s_point_idx = main_index(s_point)
        t_point_idx = main_index(t_point)
        if s_point_idx == -1 or t_point_idx == -1:
            return None
        inbound = list(reversed(branch_outbound(s_branch, s_idx)))
        return inbound + walk_main(s_point_idx, t_point_idx) + branch_outbound(t_branch, t_idx)

    return None


# ============================================================================
# 위치 기반 방향 판별 (종착역을 모를 때의 폴백)
# ============================================================================

@dataclass(frozen=True)
class StationPosition:
    index: int
    is_main_line: bool
    branch_index: Optional[int] = None


def build_position_map(line: SubwayLineConfig) -> Dict[str, StationPosition]:
    positions: Dict[str, StationPosition] = {}

    for i, name in enumerate(line.stations):
        positions[normalize_station_name(name)] = StationPosition(index=i, is_main_line=True)

    for b_idx, branch in enumerate(line.branches):
        if normalize_station_name(branch.branch_point) not in positions:
            continue
        for i, name in enumerate(branch.stations):
            node = normalize_station_name(name)
            if node in positions:
                continue
            # 분기 역: 본선 길이 + 분기 오프셋 + 분기 내 인덱스
            positions[node] = StationPosition(
                index=len(line.stations) + b_idx * 1000 + i,
                is_main_line=False,
                branch_index=b_idx,
            )

    return positions


def _direction_by_position(line: SubwayLineConfig, start: str, end: str) -> Optional[str]:
    positions = build_position_map(line)
    start_pos = positions.get(start)
    end_pos = positions.get(end)

    if start_pos is None or end_pos is None:
        return None
    if start_pos.index == end_pos.index:
        return None

    forward, backward = line.directions.forward, line.directions.backward

    def branch_point_index(pos: StationPosition) -> Optional[int]:
        if pos.branch_index is None:
            return None
        bp = positions.get(normalize_station_name(line.branches[pos.branch_index].branch_point))
        return bp.index if bp else None

    same_branch = (
        not start_pos.is_main_line
        and not end_pos.is_main_line
        and start_pos.branch_index == end_pos.branch_index
    )

    if line.type == "circular":
        main_len = len(line.stations)

        if start_pos.is_main_line and end_pos.is_main_line:
            clockwise = (end_pos.index - start_pos.index) % main_len
            return forward if clockwise <= main_len - clockwise else backward

        # 분기점에서 멀어지면 forward
        if same_branch:
            return forward if end_pos.index > start_pos.index else backward

        start_main = start_pos.index if start_pos.is_main_line else branch_point_index(start_pos)
        end_main = end_pos.index if end_pos.is_main_line else branch_point_index(end_pos)
        if start_main is None or end_main is None:
            return None

        if start_main == end_main:
            return backward if not start_pos.is_main_line else forward

        clockwise = (end_main - start_main) % main_len
        return forward if clockwise <= main_len - clockwise else backward

    # 직선 노선
    if start_pos.is_main_line and end_pos.is_main_line:
        return forward if end_pos.index > start_pos.index else backward

    if same_branch:
        return forward if end_pos.index > start_pos.index else backward

    def effective_index(pos: StationPosition) -> int:
        # 분기는 항상 forward 방향으로 뻗어 있으므로 분기점 + 1 로 대리
        if pos.is_main_line:
            return pos.index
        bp_idx = branch_point_index(pos)
        return bp_idx + 1 if bp_idx is not None else pos.index

    eff_start = effective_index(start_pos)
    eff_end = effective_index(end_pos)
    if eff_end > eff_start:
        return forward
    if eff_end < eff_start:
        return backward

    if start_pos.is_main_line and not end_pos.is_main_line:
        return forward
    if not start_pos.is_main_line and end_pos.is_main_line:
        return backward
    return None


# ============================================================================
# 공개 API
# ============================================================================

class SubwayNetwork:
    """
    노선 테이블과 그로부터 구축한 그래프 묶음.
    생성 후 변경하지 않으므로 동시 요청에서 그대로 공유한다.
    """

    def __init__(self, lines: Mapping[str, SubwayLineConfig]):
        self.lines: Mapping[str, SubwayLineConfig] = MappingProxyType(dict(lines))
        self.graphs: Mapping[str, SubwayGraph] = MappingProxyType(
            {line_id: build_line_graph(line) for line_id, line in self.lines.items()}
        )

    def is_station_known(self, line_id: str, station_name: str) -> bool:
        graph = self.graphs.get(line_id)
        return graph is not None and normalize_station_name(station_name) in graph.stations

    def will_train_reach_station(
        self,
        line_id: str,
        start_station: str,
        dest_station: str,
        train_terminal: str,
        direction: Optional[str] = None,
    ) -> bool:
        """
        종착역이 train_terminal 인 열차를 start_station 에서 타면
        dest_station 을 지나가는지 판별한다.

        Args:
            line_id: 노선 코드 (예: "1002")
            start_station: 승차역
            dest_station: 하차역
            train_terminal: 열차 종착역 (API bstatnNm)
            direction: updnLine 값 (순환선 방향 판별용)
        """
        graph = self.graphs.get(line_id)
        line = self.lines.get(line_id)
        if graph is None or line is None:
            return False

        start = normalize_station_name(start_station)
        dest = normalize_station_name(dest_station)
        terminal = normalize_station_name(train_terminal)

        if start not in graph.stations or dest not in graph.stations:
            return False
        if terminal not in graph.stations:
            return False
        if start == dest:
            return True

        # 종착역 = 하차역: 승차역에서 도달 가능하기만 하면 된다
        if dest == terminal:
            return find_path(graph, start, dest) is not None

        if line.type == "circular" and direction:
            train_path = directed_circular_path(line, start, terminal, direction)
            return train_path is not None and dest in train_path

        path_to_terminal = find_path(graph, start, terminal)
        return path_to_terminal is not None and dest in path_to_terminal

    def determine_subway_direction(
        self, line_id: str, start_station: str, end_station: str
    ) -> Optional[str]:
        """
        역 위치 비교로 방향 라벨("상행"/"하행"/"외선"/"내선")을 판별한다.
        어느 한 역이라도 노선에 없으면 None.
        """
        line = self.lines.get(line_id)
        if line is None:
            return None
        return _direction_by_position(
            line,
            normalize_station_name(start_station),
            normalize_station_name(end_station),
        )


@lru_cache(maxsize=1)
def default_network() -> SubwayNetwork:
    """프로세스 수명 동안 한 번만 구축한다."""
    network = SubwayNetwork(SUBWAY_LINES)
    logger.info("Subway graphs built: %d lines", len(network.graphs))
    return network


def will_train_reach_station(
    line_id: str,
    start_station: str,
    dest_station: str,
    train_terminal: str,
    direction: Optional[str] = None,
) -> bool:
    return default_network().will_train_reach_station(
        line_id, start_station, dest_station, train_terminal, direction
    )


def determine_subway_direction(line_id: str, start_station: str, end_station: str) -> Optional[str]:
    return default_network().determine_subway_direction(line_id, start_station, end_station)


def is_station_known(line_id: str, station_name: str) -> bool:
    return default_network().is_station_known(line_id, station_name)
