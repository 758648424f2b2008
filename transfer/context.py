"""
transfer/context.py
-------------------
Everything a transfer session needs from the outside world, in one place.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from transfer.cancel import CancelToken
from transfer.errors import TransferError
from transfer.events import EventBus
from transfer.providers import ConnectionProvider, MetadataProvider

if TYPE_CHECKING:
    from transfer.pipes import Pipe


@dataclass
class TransferContext:
    """
    Attributes:
        metadata:     Catalog access for target containers.
        connections:  Opens and initialises target connections.
        pipes:        Pipes of the session, in declaration order.
        bus:          Metadata change notifications.
        cancel_token: Shared by every long-running step of the session.
        errors:       Non-fatal problems collected while preparing the
                      transfer (resolution failures and the like).
    """
    metadata: MetadataProvider
    connections: ConnectionProvider | None = None
    pipes: list["Pipe"] = field(default_factory=list)
    bus: EventBus = field(default_factory=EventBus)
    cancel_token: CancelToken = field(default_factory=CancelToken)
    errors: list[TransferError] = field(default_factory=list)
