# commute_eta/ttl_cache.py
"""
프로세스 내 TTL 캐시

서비스 인스턴스가 생성 시 주입받아 사용한다 (모듈 전역 상태 없음).
asyncio 단일 스레드에서만 접근하므로 락은 두지 않는다.
동시 요청이 같은 키를 쓰는 경우 마지막 쓰기가 이긴다. 값은 같은 키의
재계산 결과이므로 최악의 경우에도 중복 upstream 호출 1회로 끝난다.
"""
from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, Iterator, Optional, Tuple, TypeVar

V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: Optional[float]  # None = 만료 없음


class TTLCache(Generic[V]):
    """
    만료 시간과 최대 크기를 가진 캐시.

    Args:
        ttl: 항목 유효 시간 (초). None 이면 만료하지 않는다.
        max_entries: 최대 항목 수. 초과 시 가장 오래 전에 기록된 항목부터 제거.
        clock: 현재 시각(초)을 돌려주는 함수. 테스트에서 교체할 수 있다.
    """

    def __init__(
        self,
        ttl: Optional[float],
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._store: "OrderedDict[Hashable, _Entry[V]]" = OrderedDict()

    def _live_entry(self, key: Hashable) -> Optional[_Entry[V]]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._store[key]
            return None
        return entry

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        entry = self._live_entry(key)
        return entry.value if entry is not None else default

    def __contains__(self, key: Hashable) -> bool:
        return self._live_entry(key) is not None

    def set(self, key: Hashable, value: V) -> None:
        expires_at = None if self.ttl is None else self._clock() + self.ttl
        if key in self._store:
            del self._store[key]
        self._store[key] = _Entry(value=value, expires_at=expires_at)
        while len(self._store) > self.max_entries:
            self._store.popitem(last=False)

    def purge(self, predicate: Callable[[Hashable, V], bool]) -> int:
        """predicate 가 True 인 항목을 제거하고 제거 수를 반환한다."""
        stale = [k for k, e in self._store.items() if predicate(k, e.value)]
        for key in stale:
            del self._store[key]
        return len(stale)

    def items(self) -> Iterator[Tuple[Hashable, V]]:
        for key in list(self._store.keys()):
            entry = self._live_entry(key)
            if entry is not None:
                yield key, entry.value

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return sum(1 for _ in self.items())
