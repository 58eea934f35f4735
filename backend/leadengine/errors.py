from __future__ import annotations

class LeadEngineError(Exception):
    """Base for all errors raised by the ingestion and scoring core."""

class WorkerConfigError(LeadEngineError):
    """Unrecoverable worker configuration (missing credentials, unknown provider)."""

class ImportRunClosedError(LeadEngineError):
    def __init__(self, run_id: int, status: str) -> None:
        super().__init__(f"import run {run_id} is already {status}")
        self.run_id = run_id
        self.status = status

class AlertNotFoundError(LeadEngineError):
    def __init__(self, alert_id: int) -> None:
        super().__init__(f"alert {alert_id} not found")
        self.alert_id = alert_id

class InvalidAlertTransitionError(LeadEngineError):
    def __init__(self, alert_id: int, current: str, target: str) -> None:
        super().__init__(f"alert {alert_id}: cannot move from {current} to {target}")
        self.alert_id = alert_id
        self.current = current
        self.target = target

class PropertyNotFoundError(LeadEngineError):
    def __init__(self, property_id: int) -> None:
        super().__init__(f"property {property_id} not found")
        self.property_id = property_id

class LeadNotFoundError(LeadEngineError):
    def __init__(self, lead_id: int) -> None:
        super().__init__(f"lead {lead_id} not found")
        self.lead_id = lead_id
