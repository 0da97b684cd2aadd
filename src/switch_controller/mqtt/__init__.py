"""MQTT broker session package.

- session.py: AiomqttSession, the broker session collaborator built on aiomqtt
"""

from .session import AiomqttSession, reason_from_return_code

__all__ = [
    "AiomqttSession",
    "reason_from_return_code",
]
