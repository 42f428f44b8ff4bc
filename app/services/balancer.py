"""
Round-robin load balancer with failover over named strategies.

Each call starts at the strategy after the last one that succeeded and walks the
list once. A failing strategy is logged and the next one is tried; cancellation is
propagated immediately. When every strategy failed, AllProvidersFailedError carries
each (name, error) pair.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from app.core.cancellation import CancellationToken
from app.core.errors import AllProvidersFailedError, OperationCancelledError
from app.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ServiceStrategy(Generic[T]):
    name: str
    execute: Callable[..., Awaitable[T]]


class LoadBalancer(Generic[T]):
    def __init__(self, strategies: Sequence[ServiceStrategy[T]] = ()):
        self._strategies: List[ServiceStrategy[T]] = list(strategies)
        self._offset = 0

    @property
    def number_of_strategies(self) -> int:
        return len(self._strategies)

    @property
    def names(self) -> List[str]:
        return [strategy.name for strategy in self._strategies]

    async def execute(self, *args, token: Optional[CancellationToken] = None) -> T:
        """Run the first strategy that succeeds, forwarding `args` and the token."""
        errors: List[Tuple[str, BaseException]] = []
        count = len(self._strategies)

        for attempt in range(count):
            if token is not None:
                token.raise_if_cancelled()

            index = (self._offset + attempt) % count
            strategy = self._strategies[index]
            try:
                result = await strategy.execute(*args, token=token)
            except OperationCancelledError:
                raise
            except Exception as e:
                if token is not None and token.is_cancelled:
                    raise
                logger.warning("strategy failed, failing over", strategy=strategy.name, error=str(e))
                errors.append((strategy.name, e))
                continue

            self._offset = (index + 1) % count
            return result

        raise AllProvidersFailedError(errors)
