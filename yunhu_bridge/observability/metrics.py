from __future__ import annotations
from prometheus_client import Counter, Histogram

outbound_sends = Counter("yhb_outbound_sends_total", "Wire payloads sent", ["content_type"])
send_failures = Counter("yhb_send_failures_total", "Sends rejected by the API or the transport", ["reason"])
send_latency = Histogram("yhb_send_latency_seconds", "Latency of one /bot/send call")
media_uploads = Counter("yhb_media_uploads_total", "Media uploads", ["kind", "outcome"])
resolver_failures = Counter("yhb_resolver_failures_total", "Degraded resolver lookups", ["resolver"])
inbound_events = Counter("yhb_inbound_events_total", "Webhook events received", ["event_type"])
