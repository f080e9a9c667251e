import time
import functools
import logging
from datetime import timedelta
from typing import Callable, Any, TypeVar, cast

from pbrtapi.utils.logger import RichLogger

logger = RichLogger.get_logger("pbrtapi.timing", logging.INFO)

F = TypeVar('F', bound=Callable[..., Any])


def timeit(log_level: str = "debug", with_args: bool = False) -> Callable[[F], F]:
    """
    A decorator that logs the execution time of a function.

    Args:
        log_level: The logging level to use ('debug', 'info', 'warning')
        with_args: Whether to include function arguments in the log message

    Returns:
        The decorated function
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            func_name = func.__qualname__

            args_str = ""
            if with_args:
                # Scene texts can be huge, keep the log line short
                args_parts = [_short_repr(arg) for arg in args[1:]]
                kwargs_parts = [f"{k}={_short_repr(v)}" for k, v in kwargs.items()]
                args_str = f" with args: ({', '.join(args_parts + kwargs_parts)})"

            logger.debug(f"Starting {func_name}{args_str}")

            result = func(*args, **kwargs)

            elapsed_time = time.perf_counter() - start_time
            elapsed = timedelta(seconds=elapsed_time)
            message = f"{func_name} completed in {elapsed} ({elapsed_time:.3f}s)"

            level = log_level.lower()
            if level == "info":
                logger.info(message)
            elif level == "warning":
                logger.warning(message)
            else:
                logger.debug(message)

            return result
        return cast(F, wrapper)
    return decorator


def _short_repr(value: Any, limit: int = 60) -> str:
    text = repr(value)
    return text if len(text) <= limit else text[:limit] + "..."
