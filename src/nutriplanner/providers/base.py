"""Backend protocol: the minimal interface the conversation client needs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from nutriplanner.request import RequestEnvelope
    from nutriplanner.streaming import AsyncByteSource


@runtime_checkable
class GenerativeBackend(Protocol):
    """Remote generative-model service."""

    async def generate_content(self, envelope: RequestEnvelope) -> dict[str, Any]:
        """Send *envelope* and return the whole JSON reply.

        Raises ``TransportError`` for non-2xx statuses and transport failures.
        """
        ...

    async def open_stream(self, envelope: RequestEnvelope) -> AsyncByteSource:
        """Send *envelope* for streaming; return once the status is known.

        Raises ``TransportError`` for non-2xx statuses, before any byte is
        handed out.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
