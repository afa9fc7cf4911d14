import functools

import pytest

from asyncrequest import utils


async def fetch_status():
    return 200


def parse_status(raw):
    return int(raw)


async def stream_chunks():
    yield b"chunk"


class HealthCheck:
    async def check(self):
        return True

    def check_sync(self):
        return True


@pytest.mark.parametrize(
    "func, expected",
    [
        (fetch_status, True),
        (stream_chunks, True),
        (HealthCheck().check, True),
        (HealthCheck.check, True),
        (parse_status, False),
        (HealthCheck().check_sync, False),
        (functools.partial(fetch_status), True),
        (functools.partial(functools.partial(fetch_status)), True),
        (functools.partial(parse_status, "1"), False),
        (lambda c: c, False),
        (None, False),
    ],
)
def test_is_coro_func(func, expected):
    assert utils.is_coro_func(func) is expected


@pytest.mark.asyncio
async def test_call_maybe_async_with_coroutine_function():
    assert await utils.call_maybe_async(fetch_status) == 200


@pytest.mark.asyncio
async def test_call_maybe_async_with_sync_function():
    assert await utils.call_maybe_async(parse_status, "404") == 404


@pytest.mark.asyncio
async def test_call_maybe_async_with_partial_and_kwargs():
    async def scale(value, *, factor):
        return value * factor

    bound = functools.partial(scale, factor=3)

    assert await utils.call_maybe_async(bound, 2) == 6


@pytest.mark.asyncio
async def test_call_maybe_async_awaits_returned_awaitable():
    def deferred(value):
        async def produce():
            return value

        return produce()

    assert await utils.call_maybe_async(deferred, "ready") == "ready"


@pytest.mark.asyncio
async def test_call_maybe_async_propagates_errors():
    async def failing():
        raise ValueError("predicate failed")

    with pytest.raises(ValueError, match="predicate failed"):
        await utils.call_maybe_async(failing)


class TestEnvReaders:
    VAR = "ASYNCREQUEST_TEST_VALUE"

    @pytest.fixture
    def env(self, monkeypatch):
        monkeypatch.delenv(self.VAR, raising=False)

        def setter(value):
            monkeypatch.setenv(self.VAR, value)

        return setter

    @pytest.mark.parametrize("raw", ["true", "On", " YES ", "1", "y"])
    def test_bool_truthy(self, env, raw):
        env(raw)
        assert utils.get_env_bool(self.VAR) is True

    @pytest.mark.parametrize("raw", ["false", "OFF", "no", "0", "n"])
    def test_bool_falsy(self, env, raw):
        env(raw)
        assert utils.get_env_bool(self.VAR, default=True) is False

    def test_bool_fallbacks(self, env):
        assert utils.get_env_bool(self.VAR, default=True) is True
        env("")
        assert utils.get_env_bool(self.VAR, default=True) is True
        env("sometimes")
        assert utils.get_env_bool(self.VAR, default=False) is False

    def test_dict(self, env):
        env('{"X-Client": "asyncrequest", "retries": 2}')
        assert utils.get_env_dict(self.VAR) == {"X-Client": "asyncrequest", "retries": 2}

    @pytest.mark.parametrize("raw", ["{broken", "[1, 2]", '"text"'])
    def test_dict_fallback(self, env, raw):
        env(raw)
        assert utils.get_env_dict(self.VAR, {"fallback": True}) == {"fallback": True}

    def test_dict_unset(self, env):
        assert utils.get_env_dict(self.VAR) is None

    def test_float(self, env):
        assert utils.get_env_float(self.VAR, 1.5) == 1.5
        env(" 2.25 ")
        assert utils.get_env_float(self.VAR) == 2.25
        env("fast")
        assert utils.get_env_float(self.VAR, 1.5) == 1.5

    def test_int(self, env):
        assert utils.get_env_int(self.VAR) is None
        env("4096")
        assert utils.get_env_int(self.VAR) == 4096
        env("4.5")
        assert utils.get_env_int(self.VAR, 7) == 7
