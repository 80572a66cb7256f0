from lodge_gateway.client.context_store import InMemoryStore, KeyValueStore, context_from_store
from lodge_gateway.client.frame_parser import (
	FrameParser,
	StreamEvent,
	consume_stream,
	dispatch_events,
	iter_stream_events,
)
from lodge_gateway.client.gateway_client import GatewayClient, GatewayClientError

__all__ = [
	"FrameParser",
	"GatewayClient",
	"GatewayClientError",
	"InMemoryStore",
	"KeyValueStore",
	"StreamEvent",
	"consume_stream",
	"context_from_store",
	"dispatch_events",
	"iter_stream_events",
]
