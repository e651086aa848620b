"""RabbitMQ consumer lifecycle states and queue argument names."""
from enum import Enum


class ConsumerState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CHANNEL_OPEN = "CHANNEL_OPEN"
    QUEUE_DECLARED = "QUEUE_DECLARED"
    READY = "READY"
    RECONNECTING = "RECONNECTING"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


DELIVERY_COUNT_HEADER = "x-delivery-count"
DEAD_LETTER_EXCHANGE_ARG = "x-dead-letter-exchange"
DEAD_LETTER_ROUTING_KEY_ARG = "x-dead-letter-routing-key"
QUEUE_TYPE_ARG = "x-queue-type"
CLASSIC_MAX_RECEIVE_COUNT = 2
