"""SmartQueue - virtual queues with adaptive wait-time estimates."""

__version__ = "0.1.0"
