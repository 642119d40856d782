from functools import wraps
from typing import Callable, Iterable

from pydantic import BaseModel


def async_cached(
    key_builder: Callable[..., str], schema: type[BaseModel], ttl: int | None = None
):
    """
    Cache-aside decorator for async service methods. The instance must expose
    a ``cache`` attribute; key_builder receives the method's remaining args.
    Example:
      @async_cached(lambda task_id, **kw: f"task:{task_id}", TaskRead)
      async def get_task(self, task_id): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            key = key_builder(*args, **kwargs)

            async def loader():
                value = await fn(self, *args, **kwargs)
                if value is None:
                    return None
                return schema.model_validate(value)

            return await self.cache.get(key, schema=schema, loader=loader, ttl=ttl)

        return wrapper

    return decorator


def async_cached_expire(key_builder: Callable[..., str | Iterable[str]]):
    """
    Invalidate keys after the wrapped mutation commits. key_builder may return
    one key or several; keys derived from the result can be added by returning
    them from the method's ``cache_keys`` hook.
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            result = await fn(self, *args, **kwargs)
            keys = key_builder(*args, **kwargs)
            keys = [keys] if isinstance(keys, str) else list(keys)
            keys.extend(self.cache_keys(result))
            await self.cache.delete(*keys)
            return result

        return wrapper

    return decorator
