"""Queue batch event bindings."""

from rpcruntime.consumer.adapter import handle_queue_event, wrap_queue_handler
from rpcruntime.consumer.events import QueueEvent, QueueMessage

__all__ = ["QueueEvent", "QueueMessage", "handle_queue_event", "wrap_queue_handler"]
