# infra_dashboard/core/context.py

import contextvars

correlation_id_ctx = contextvars.ContextVar("correlation_id", default=None)
subscriber_id_ctx = contextvars.ContextVar("subscriber_id", default=None)
