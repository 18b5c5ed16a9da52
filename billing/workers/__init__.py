"""Workers module - in-process background loops."""

from billing.workers.renewal_scheduler import RenewalScheduler

__all__ = ["RenewalScheduler"]
