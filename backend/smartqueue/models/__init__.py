# Database models
from smartqueue.models.queue import QueueModel
from smartqueue.models.ticket import TicketModel
from smartqueue.models.eta_stats import EtaStatsModel

__all__ = [
    "QueueModel",
    "TicketModel",
    "EtaStatsModel",
]
