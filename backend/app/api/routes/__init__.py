from . import health, invoices, jobs

__all__ = [
    "health",
    "invoices",
    "jobs",
]
