from prometheus_client import Counter, REGISTRY


# we check if they are already registered to avoid errors during hot reloads or test runs
def get_or_create_metric(name, documentation, metric_type, **kwargs):
    try:
        return metric_type(name, documentation, **kwargs)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


REQUESTS_TOTAL = get_or_create_metric(
    "calendar_sync_requests_total",
    "Total requests",
    Counter,
    labelnames=["endpoint", "status"],
)

EVENTS_RECONCILED_TOTAL = get_or_create_metric(
    "calendar_sync_events_reconciled_total",
    "Events applied to the local store, by action",
    Counter,
    labelnames=["action"],
)

TOKEN_REFRESH_TOTAL = get_or_create_metric(
    "calendar_sync_token_refresh_total",
    "Access token refresh attempts, by outcome",
    Counter,
    labelnames=["outcome"],
)

WEBHOOK_NOTIFICATIONS_TOTAL = get_or_create_metric(
    "calendar_sync_webhook_notifications_total",
    "Webhook deliveries received, by X-Goog-Resource-State",
    Counter,
    labelnames=["resource_state"],
)

WATCH_REGISTRATIONS_TOTAL = get_or_create_metric(
    "calendar_sync_watch_registrations_total",
    "Push channel registrations, by outcome",
    Counter,
    labelnames=["outcome"],
)
