from prometheus_client import Counter

SYNC_PUSH_TOTAL = Counter("sync_push_total", "Push attempts to the remote platform", ["resource", "outcome"])
SYNC_PULL_RECORDS_TOTAL = Counter(
    "sync_pull_records_total", "Remote records reconciled by pull", ["resource", "outcome"]
)
SYNC_TASKS_DROPPED = Counter("sync_tasks_dropped_total", "Push tasks dropped because the queue was full")
WEBHOOK_EVENTS_TOTAL = Counter("webhook_events_total", "Inbound webhook deliveries", ["topic", "outcome"])
