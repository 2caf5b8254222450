"""
Kafka infrastructure package.
"""

from .consumer import KafkaConsumer
from .event_bus import KafkaEventBus
from .producer import KafkaProducer

__all__ = [
    "KafkaProducer",
    "KafkaConsumer",
    "KafkaEventBus",
]
