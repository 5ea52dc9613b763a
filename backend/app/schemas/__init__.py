from app.schemas import common, invoice, job

__all__ = [
    "common",
    "invoice",
    "job",
]
