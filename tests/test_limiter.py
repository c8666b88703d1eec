import asyncio

import pytest

from deepresearch.limiter import ConcurrencyBudget


def assert_invariant(budget: ConcurrencyBudget) -> None:
    assert budget.effective_capacity == budget.nominal_capacity + budget.active_recursive_parents
    assert budget.active_recursive_parents >= 0


def test_rejects_capacity_below_one():
    with pytest.raises(ValueError):
        ConcurrencyBudget(0)
    budget = ConcurrencyBudget(1)
    with pytest.raises(ValueError):
        budget.set_nominal_capacity(0)


@pytest.mark.asyncio
async def test_run_limits_concurrency():
    budget = ConcurrencyBudget(2)
    running = 0
    peak = 0

    async def work(i):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return i * 2

    results = await asyncio.gather(*(budget.run(work, i) for i in range(6)))

    assert results == [0, 2, 4, 6, 8, 10]
    assert peak == 2
    assert budget.active_count == 0
    assert budget.pending_count == 0


@pytest.mark.asyncio
async def test_waiters_are_admitted_in_fifo_order():
    budget = ConcurrencyBudget(1)
    gate = asyncio.Event()
    started = []

    async def hold():
        await gate.wait()

    async def record(i):
        started.append(i)

    first = asyncio.create_task(budget.run(hold))
    await asyncio.sleep(0)
    waiters = []
    for i in range(4):
        waiters.append(asyncio.create_task(budget.run(record, i)))
        await asyncio.sleep(0)
    assert budget.pending_count == 4

    gate.set()
    await asyncio.gather(first, *waiters)

    assert started == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_slot_is_released_when_task_raises():
    budget = ConcurrencyBudget(1)

    async def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await budget.run(boom)
    assert budget.active_count == 0
    assert await budget.run(asyncio.sleep, 0, result="ok") == "ok"


@pytest.mark.asyncio
async def test_raising_capacity_admits_a_waiter():
    budget = ConcurrencyBudget(1)
    gate = asyncio.Event()
    ran = asyncio.Event()

    async def hold():
        await gate.wait()

    async def mark():
        ran.set()

    holder = asyncio.create_task(budget.run(hold))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(budget.run(mark))
    await asyncio.sleep(0)
    assert not ran.is_set()

    budget.raise_capacity_temporarily()
    assert_invariant(budget)
    await asyncio.wait_for(ran.wait(), timeout=1)
    budget.restore_capacity()
    assert_invariant(budget)

    gate.set()
    await asyncio.gather(holder, waiter)
    assert budget.effective_capacity == 1


def test_restore_without_raise_fails():
    budget = ConcurrencyBudget(2)
    with pytest.raises(RuntimeError):
        budget.restore_capacity()
    assert_invariant(budget)


@pytest.mark.asyncio
async def test_inflated_restores_on_error():
    budget = ConcurrencyBudget(2)
    with pytest.raises(ValueError):
        async with budget.inflated():
            assert budget.effective_capacity == 3
            assert budget.active_recursive_parents == 1
            raise ValueError("child failed")
    assert budget.effective_capacity == 2
    assert budget.active_recursive_parents == 0


@pytest.mark.asyncio
async def test_nominal_change_preserves_inflation():
    budget = ConcurrencyBudget(2)
    async with budget.inflated():
        budget.set_nominal_capacity(4)
        assert budget.nominal_capacity == 4
        assert budget.effective_capacity == 5
        assert_invariant(budget)
        budget.set_nominal_capacity(1)
        assert budget.effective_capacity == 2
        assert_invariant(budget)
    assert budget.effective_capacity == 1
    assert budget.snapshot() == {
        "nominal_capacity": 1,
        "effective_capacity": 1,
        "active_recursive_parents": 0,
        "active": 0,
        "pending": 0,
    }


@pytest.mark.asyncio
async def test_growing_nominal_capacity_wakes_waiters():
    budget = ConcurrencyBudget(1)
    gate = asyncio.Event()
    ran = asyncio.Event()

    async def hold():
        await gate.wait()

    async def mark():
        ran.set()

    holder = asyncio.create_task(budget.run(hold))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(budget.run(mark))
    await asyncio.sleep(0)

    budget.set_nominal_capacity(2)
    await asyncio.wait_for(ran.wait(), timeout=1)
    gate.set()
    await asyncio.gather(holder, waiter)


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_the_queue():
    budget = ConcurrencyBudget(1)
    gate = asyncio.Event()

    async def hold():
        await gate.wait()

    holder = asyncio.create_task(budget.run(hold))
    await asyncio.sleep(0)
    waiter = asyncio.create_task(budget.run(asyncio.sleep, 0))
    await asyncio.sleep(0)
    assert budget.pending_count == 1

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert budget.pending_count == 0

    gate.set()
    await holder
    assert budget.active_count == 0


@pytest.mark.asyncio
async def test_recursive_tree_on_one_slot_does_not_deadlock():
    budget = ConcurrencyBudget(1)

    async def node(depth):
        if depth == 0:
            await asyncio.sleep(0)
            return 1
        async with budget.inflated():
            counts = await asyncio.gather(*(budget.run(node, depth - 1) for _ in range(3)))
        return sum(counts)

    total = await asyncio.wait_for(budget.run(node, 3), timeout=5)

    assert total == 27
    assert budget.effective_capacity == 1
    assert budget.active_count == 0
