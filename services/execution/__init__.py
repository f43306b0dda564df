from .simulator import ExecutionSimulator, receipt_id_for

__all__ = ["ExecutionSimulator", "receipt_id_for"]
