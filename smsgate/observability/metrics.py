from __future__ import annotations
from prometheus_client import Counter, Histogram

outbound_requests = Counter("smsgate_outbound_requests_total", "Outbound send requests", ["kind", "code"])
inbound_messages = Counter("smsgate_inbound_messages_total", "Inbound messages received from the provider")
webhook_forwards = Counter("smsgate_webhook_forwards_total", "Webhook forward attempts", ["result"])
webhook_latency = Histogram("smsgate_webhook_latency_seconds", "Webhook POST latency seconds")
