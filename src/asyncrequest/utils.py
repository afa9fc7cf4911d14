import functools
import inspect
import json
import os
from typing import Any, Callable, Optional

__all__ = [
    "is_coro_func",
    "call_maybe_async",
    "get_env_bool",
    "get_env_dict",
    "get_env_float",
    "get_env_int",
]

_TRUTHY = frozenset({"true", "1", "yes", "y", "on"})
_FALSY = frozenset({"false", "0", "no", "n", "off"})


def is_coro_func(func: Callable[..., Any]) -> bool:
    """
    Tell whether calling `func` produces a coroutine or an async generator.

    functools.partial wrappers (nested ones included) are looked through.
    """
    while isinstance(func, functools.partial):
        func = func.func
    return inspect.iscoroutinefunction(func) or inspect.isasyncgenfunction(func)


async def call_maybe_async(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """
    Call a sync or async callable and return its awaited result.

    Sync callables run inline on the event loop, so they should be cheap
    predicates rather than blocking work.
    """
    if is_coro_func(func):
        return await func(*args, **kwargs)
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


def _env_text(var_name: str) -> Optional[str]:
    raw = os.environ.get(var_name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def get_env_bool(var_name: str, default: bool = False) -> bool:
    """
    Read a boolean flag from the environment.

    Accepts true/1/yes/y/on and false/0/no/n/off in any case. Unset, empty
    and unrecognized values yield `default`.
    """
    raw = _env_text(var_name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    return default


def get_env_dict(
    var_name: str, default: Optional[dict[Any, Any]] = None
) -> Optional[dict[Any, Any]]:
    """
    Read a JSON object from the environment.

    Args:
        var_name: Name of the environment variable.
        default: Returned when the variable is unset, is not valid JSON, or
            holds JSON that is not an object.
    """
    raw = os.environ.get(var_name)
    if raw is None:
        return default
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return default
    return parsed if isinstance(parsed, dict) else default


def get_env_float(var_name: str, default: Optional[float] = None) -> Optional[float]:
    """Read a float from the environment, or `default` if unset or malformed."""
    raw = _env_text(var_name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def get_env_int(var_name: str, default: Optional[int] = None) -> Optional[int]:
    """Read an int from the environment, or `default` if unset or malformed."""
    raw = _env_text(var_name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default
