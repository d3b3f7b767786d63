"""Tests for the concurrent gather helper."""

import asyncio

import pytest

from taskboard.utils.tasks import gather_or_cancel


async def value(x, delay=0):
    await asyncio.sleep(delay)
    return x


async def test_results_keep_argument_order():
    assert await gather_or_cancel(value(1, 0.02), value(2), value(3, 0.01)) == [1, 2, 3]
    assert await gather_or_cancel() == []


async def test_failure_cancels_and_drains_siblings():
    finished = []

    async def hang(name):
        try:
            await asyncio.sleep(30)
        finally:
            finished.append(name)

    async def broken():
        await asyncio.sleep(0)
        raise KeyError("missing")

    with pytest.raises(KeyError):
        await gather_or_cancel(hang("a"), broken(), hang("b"))

    assert sorted(finished) == ["a", "b"]


async def test_caller_cancellation_drains_children():
    finished = []

    async def hang():
        try:
            await asyncio.sleep(30)
        finally:
            finished.append(True)

    outer = asyncio.ensure_future(gather_or_cancel(hang(), hang()))
    await asyncio.sleep(0.01)
    outer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await outer

    assert finished == [True, True]
