from . import jobs, webhooks

__all__ = [
    "jobs",
    "webhooks",
]
