import pytest

from pre_arch import context


def test_execution_requires_env(monkeypatch) -> None:
    assert not context.execution_enabled(dry_run=False)
    monkeypatch.setenv("PRE_ARCH_EXEC", "1")
    assert context.execution_enabled(dry_run=False)
    assert not context.execution_enabled(dry_run=True)


@pytest.mark.parametrize(
    "value, expected",
    [(None, 2.0), ("", 2.0), ("0.5", 0.5), ("-3", 0.0), ("soon", 2.0)],
)
def test_settle_seconds_from_env(monkeypatch, value, expected) -> None:
    if value is None:
        monkeypatch.delenv("PRE_ARCH_SETTLE_SECONDS", raising=False)
    else:
        monkeypatch.setenv("PRE_ARCH_SETTLE_SECONDS", value)
    assert context.settle_seconds_from_env() == expected


def test_settle_only_sleeps_when_executing(make_ctx) -> None:
    ctx = make_ctx(execute=False)
    ctx.settle()
    assert ctx.host.sleeps == []

    ctx = make_ctx()
    ctx.settle()
    ctx.settle(5)
    assert ctx.host.sleeps == [2.0, 5]
