import pytest

import xargs


class FakeRunner:
    """Records command lines instead of running them."""

    def __init__(self):
        self.calls = []
        self.codes = []

    def __call__(self, argv, tty_stdin=False):
        self.calls.append([arg.decode() for arg in argv])
        code = self.codes.pop(0) if self.codes else 0
        return xargs.classify(code)


@pytest.fixture
def fake_runner(monkeypatch):
    runner = FakeRunner()
    monkeypatch.setattr(xargs, "run_command", runner)
    return runner


@pytest.fixture
def parse():
    parser = xargs.build_parser()
    return parser.parse_args
