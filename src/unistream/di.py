from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .exchanges.base import BaseStreamingExchange

if TYPE_CHECKING:
    from .settings import Settings


@dataclass(slots=True)
class AppContainer:
    settings: "Settings"
    shutdown: asyncio.Event = field(default_factory=asyncio.Event)
    exchanges: dict[str, BaseStreamingExchange] = field(default_factory=dict)

    async def close(self) -> None:
        for exchange in self.exchanges.values():
            await exchange.close()


def build_container(
    settings: "Settings", exchanges: dict[str, BaseStreamingExchange] | None = None
) -> AppContainer:
    """Build application container with streaming adapters."""
    return AppContainer(settings=settings, exchanges=exchanges or {})
