"""Prometheus counters for chat traffic, served on /metrics."""

from prometheus_client import Counter

TOKENS_TOTAL = Counter(
    "adiva_tokens_total",
    "Tokens reported by upstream providers",
    ["model"],
)
CONVERSATIONS_TOTAL = Counter(
    "adiva_conversations_total",
    "Completed chat exchanges",
    ["audience"],
)
PROVIDER_ERRORS_TOTAL = Counter(
    "adiva_provider_errors_total",
    "Upstream provider failures by mapped error code",
    ["code"],
)
GUEST_DENIALS_TOTAL = Counter(
    "adiva_guest_denials_total",
    "Guest chat requests rejected by the quota gate",
)


def track_exchange(policy, model, usage, audience):
    """Record tokens and a finished exchange when analytics are enabled."""
    if not policy.analytics_enabled:
        return
    TOKENS_TOTAL.labels(model=model).inc(usage.get("total_tokens", 0))
    CONVERSATIONS_TOTAL.labels(audience=audience).inc()


def track_error(code):
    PROVIDER_ERRORS_TOTAL.labels(code=code).inc()
