"""Per-request bookkeeping and model client disposal."""

import logging
import weakref
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# id(request) -> request-scoped data, one entry per in-flight turn
request_data_map: Dict[int, Dict[str, Any]] = {}


def _log_reclaimed(held: Dict[str, Any]) -> None:
    logger.warning(f"Model client reclaimed without explicit disposal: {held}")


class ClientRegistry:
    """Finalizer backstop for model clients that escape ``dispose_client``."""

    def __init__(self):
        self._finalizers: Dict[int, weakref.finalize] = {}

    def register(self, client: Any, held: Dict[str, Any]) -> None:
        self._finalizers[id(client)] = weakref.finalize(client, _log_reclaimed, held)

    def unregister(self, client: Any) -> None:
        finalizer = self._finalizers.pop(id(client), None)
        if finalizer is not None:
            finalizer.detach()


client_registry = ClientRegistry()


async def dispose_client(client: Optional[Any]) -> None:
    """Release a model client's resources and drop it from the registry."""
    if client is None:
        return
    client_registry.unregister(client)
    try:
        await client.dispose()
    except Exception as e:
        logger.error(f"Error disposing model client: {e}", exc_info=True)
