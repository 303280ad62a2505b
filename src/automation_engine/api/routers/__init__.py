"""API routers"""

from . import runs, webhooks, workflows

__all__ = ["runs", "webhooks", "workflows"]
