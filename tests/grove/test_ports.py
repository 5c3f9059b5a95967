import socket

import pytest
from hypothesis import given
from hypothesis import strategies as st

import grove.ports as ports
from grove.errors import ResourceExhaustedError


def _always_free(_port: int) -> bool:
    return True


def test_allocate_skips_allocated_bases() -> None:
    assert ports.allocate_port_range({3000, 3010, 3020}, probe=_always_free) == 3030


def test_allocate_returns_first_base_when_nothing_allocated() -> None:
    assert ports.allocate_port_range(set(), probe=_always_free) == 3000


def test_allocate_skips_bases_bound_by_other_processes() -> None:
    probed: list[int] = []

    def probe(port: int) -> bool:
        probed.append(port)
        return port not in {3000, 3010}

    assert ports.allocate_port_range(set(), probe=probe) == 3020
    assert probed == [3000, 3010, 3020]


def test_allocate_does_not_probe_allocated_bases() -> None:
    probed: list[int] = []

    def probe(port: int) -> bool:
        probed.append(port)
        return True

    ports.allocate_port_range({3000}, probe=probe)
    assert probed == [3010]


def test_allocate_raises_when_exhausted() -> None:
    with pytest.raises(ResourceExhaustedError) as excinfo:
        ports.allocate_port_range(set(ports.candidate_bases()), probe=_always_free)
    assert excinfo.value.code == "resource_exhausted"


def test_allocate_raises_when_every_probe_fails() -> None:
    with pytest.raises(ResourceExhaustedError):
        ports.allocate_port_range(set(), probe=lambda _port: False)


def test_candidate_bases_stay_below_upper_bound() -> None:
    bases = ports.candidate_bases()
    assert all(base % ports.PORT_RANGE_SIZE == 0 for base in bases)
    assert max(bases) < ports.PORT_MAX


def test_port_available_detects_bound_port() -> None:
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        holder.bind((ports.PROBE_HOST, 0))
        holder.listen(1)
        port = holder.getsockname()[1]
        assert ports.port_available(port) is False
    finally:
        holder.close()


@given(st.integers(min_value=1, max_value=40))
def test_successive_allocations_are_distinct(count: int) -> None:
    allocated: set[int] = set()
    returned: list[int] = []
    for _ in range(count):
        base = ports.allocate_port_range(allocated, probe=_always_free)
        allocated.add(base)
        returned.append(base)
    assert len(set(returned)) == count


@given(st.sets(st.sampled_from(list(ports.candidate_bases())[:50]), max_size=49))
def test_allocation_never_returns_an_allocated_base(allocated: set[int]) -> None:
    assert ports.allocate_port_range(allocated, probe=_always_free) not in allocated
