"""Frame decoding, fragment merging and stream delivery."""

from aistream.streaming.driver import EventStream, StreamDriver, StreamState, deliver
from aistream.streaming.passthrough import relay, relay_response

__all__ = ["EventStream", "StreamDriver", "StreamState", "deliver", "relay", "relay_response"]
