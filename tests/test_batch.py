import random

import pytest

import xargs
from xargs import (
    STOP,
    AddResult,
    BatchAccumulator,
    BatchLimits,
    argument_cost,
    build_command,
    command_bytes,
)


def limits(size_limit, template=(b"echo",), max_entries=0, overhead=0):
    base = command_bytes(list(template), overhead)
    return BatchLimits(size_limit, base, max_entries, overhead, 1)


def split_into_batches(tokens, batch_limits):
    batches = []
    pending = list(tokens)
    while pending:
        batch = BatchAccumulator(batch_limits)
        while pending and batch.add_token(pending[0]) is AddResult.ACCEPTED:
            pending.pop(0)
        batches.append(batch)
    return batches


def test_costs_count_text_terminator_and_overhead():
    assert argument_cost(b"abc", 0) == 4
    assert argument_cost(b"abc", 8) == 12
    assert argument_cost(b"ab", 0, multiplier=3) == 7
    assert command_bytes([b"echo", b"-n"], 8) == (5 + 8) + (3 + 8)


def test_accepts_until_size_limit():
    # echo costs 5, each one-letter token 2: room for exactly two.
    batch = BatchAccumulator(limits(9))
    assert batch.add_token(b"a") is AddResult.ACCEPTED
    assert batch.add_token(b"b") is AddResult.ACCEPTED
    assert batch.add_token(b"c") is AddResult.LIMIT_REACHED
    assert batch.tokens == [b"a", b"b"]
    assert batch.bytes == 9


def test_entry_limit():
    batch = BatchAccumulator(limits(1000, max_entries=2))
    assert batch.add_token(b"a") is AddResult.ACCEPTED
    assert batch.add_token(b"b") is AddResult.ACCEPTED
    assert batch.add_token(b"c") is AddResult.LIMIT_REACHED
    assert len(batch) == 2


def test_token_that_can_never_fit():
    batch = BatchAccumulator(limits(9))
    assert batch.add_token(b"abcd") is AddResult.TOO_LARGE
    assert batch.tokens == []


def test_oversized_token_is_rejected_even_after_other_tokens():
    batch = BatchAccumulator(limits(9))
    assert batch.add_token(b"a") is AddResult.ACCEPTED
    assert batch.add_token(b"abcd") is AddResult.TOO_LARGE


def test_stop_signal():
    batch = BatchAccumulator(limits(100))
    batch.add_token(b"a")
    assert batch.add_token(STOP) is AddResult.STOPPED
    assert batch.stopped
    assert batch.tokens == [b"a"]


def test_pointer_overhead_reduces_capacity():
    tight = limits(9 + 2 * xargs.POINTER_SIZE, overhead=xargs.POINTER_SIZE)
    batch = BatchAccumulator(tight)
    # The template pays its own pointer, so only one token fits.
    assert batch.add_token(b"a") is AddResult.ACCEPTED
    assert batch.add_token(b"b") is AddResult.LIMIT_REACHED


@pytest.mark.parametrize("seed", range(5))
def test_batches_never_exceed_limit_and_keep_order(seed):
    rng = random.Random(seed)
    tokens = [
        bytes(rng.choice(b"abcxyz") for _ in range(rng.randint(0, 8)))
        for _ in range(200)
    ]
    batch_limits = limits(60, template=(b"cmd", b"-x"), max_entries=rng.randint(0, 6), overhead=8)

    batches = split_into_batches(tokens, batch_limits)

    for batch in batches:
        cost = batch_limits.base_bytes + sum(argument_cost(t, 8) for t in batch.tokens)
        assert batch.bytes == cost
        assert cost <= batch_limits.size_limit
        if batch_limits.max_entries:
            assert len(batch) <= batch_limits.max_entries
    assert [t for batch in batches for t in batch.tokens] == tokens


def test_unlimited_batch_takes_everything():
    tokens = [b"t%d" % i for i in range(50)]
    batches = split_into_batches(tokens, limits(10_000))
    assert len(batches) == 1
    assert batches[0].tokens == tokens


def test_build_command_appends_in_order():
    template = [b"echo", b"-n"]
    tokens = [b"a", b"b c", b""]
    assert build_command(template, tokens) == [b"echo", b"-n", b"a", b"b c", b""]
    # The template itself is left alone.
    assert template == [b"echo", b"-n"]


def test_build_command_with_empty_batch():
    assert build_command([b"echo"], []) == [b"echo"]


def test_build_command_replaces_every_occurrence():
    template = [b"mv", b"{}", b"{}.bak", b"-v"]
    assert build_command(template, [b"file"], replace=b"{}") == [
        b"mv", b"file", b"file.bak", b"-v"
    ]


def test_build_command_leaves_special_characters_alone():
    tokens = [b"$HOME", b"*", b"a;b"]
    assert build_command([b"echo"], tokens) == [b"echo", b"$HOME", b"*", b"a;b"]


def test_default_size_limit_leaves_headroom(monkeypatch):
    monkeypatch.setattr(xargs.os, "sysconf", lambda name: 100_000)
    monkeypatch.setattr(xargs, "environ_bytes", lambda: 1000)
    assert xargs.default_size_limit() == 100_000 - 1000 - 4096


def test_default_size_limit_without_sysconf(monkeypatch):
    def broken(name):
        raise ValueError(name)

    monkeypatch.setattr(xargs.os, "sysconf", broken)
    monkeypatch.setattr(xargs, "environ_bytes", lambda: 0)
    assert xargs.default_size_limit() == xargs.FALLBACK_ARG_MAX - 4096


def test_environ_bytes_tracks_environment(monkeypatch):
    before = xargs.environ_bytes()
    monkeypatch.setenv("XARGS_TEST_VARIABLE", "value")
    after = xargs.environ_bytes()
    assert after - before == len("XARGS_TEST_VARIABLE") + len("value") + 2 + xargs.POINTER_SIZE
