"""Events exchanged between collaborators and the core components.

Collaborators (broker session, link monitor) post these onto the service queue;
the service hands each one to the supervisor and the controller ``dispatch``
methods in arrival order.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from switch_controller.structs import ControlMessage, DisconnectReason


@dataclass(frozen=True, slots=True)
class LinkUp:
    pass


@dataclass(frozen=True, slots=True)
class LinkDown:
    reason: str = ""


@dataclass(frozen=True, slots=True)
class BrokerConnected:
    session_present: bool = False


@dataclass(frozen=True, slots=True)
class BrokerDisconnected:
    reason: DisconnectReason = DisconnectReason.TCP_DISCONNECTED


@dataclass(frozen=True, slots=True)
class MessageReceived:
    message: ControlMessage


@dataclass(frozen=True, slots=True)
class SubscribeResult:
    packet_id: int
    granted_qos: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class UnsubscribeResult:
    packet_id: int


@dataclass(frozen=True, slots=True)
class PublishResult:
    packet_id: int


NetworkEvent = LinkUp | LinkDown
SessionEvent = BrokerConnected | BrokerDisconnected
ControllerEvent = MessageReceived | SubscribeResult | UnsubscribeResult | PublishResult
Event = NetworkEvent | SessionEvent | ControllerEvent
