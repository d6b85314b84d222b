"""
Contraindication Alert Engine - Exception Hierarchy

Each failure mode of the engine has its own type so callers can tell
"nothing was found" apart from "the check did not run".
"""
from typing import Optional, Dict, Any


class AlertEngineError(Exception):
    """Base exception for all alert engine errors."""

    def __init__(
        self,
        message: str,
        code: str = "ALERT_ENGINE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details
        }


class CatalogUnavailable(AlertEngineError):
    """A reference table could not be loaded; alerts of that category are missing."""

    def __init__(
        self,
        message: str,
        table: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="CATALOG_UNAVAILABLE",
            details={"table": table, **(details or {})}
        )
        self.table = table


class ConditionInferenceFailed(AlertEngineError):
    """Intake data unreachable; the inferred condition set is empty but not clean."""

    def __init__(
        self,
        message: str,
        individual_id: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="CONDITION_INFERENCE_FAILED",
            details={"individual_id": individual_id, **(details or {})}
        )
        self.individual_id = individual_id


class LedgerWriteFailed(AlertEngineError):
    """Acknowledgement was not persisted; the alert stays unacknowledged."""

    def __init__(
        self,
        message: str,
        individual_id: str = "",
        rule_id: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="LEDGER_WRITE_FAILED",
            details={"individual_id": individual_id, "rule_id": rule_id, **(details or {})}
        )
        self.individual_id = individual_id
        self.rule_id = rule_id


class LedgerReadFailed(AlertEngineError):
    """Prior acknowledgements could not be read; every alert is treated as unacknowledged."""

    def __init__(
        self,
        message: str,
        individual_id: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="LEDGER_READ_FAILED",
            details={"individual_id": individual_id, **(details or {})}
        )
        self.individual_id = individual_id


class UnknownAlert(AlertEngineError):
    """Acknowledgement requested for a rule that is not in the current alert list."""

    def __init__(self, rule_id: str, individual_id: str = ""):
        super().__init__(
            message=f"No current alert for rule {rule_id}",
            code="UNKNOWN_ALERT",
            details={"rule_id": rule_id, "individual_id": individual_id}
        )
        self.rule_id = rule_id


class KeywordDictionaryError(AlertEngineError):
    """Condition keyword dictionary file is missing or malformed."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(
            message=message,
            code="KEYWORD_DICTIONARY_ERROR",
            details={"path": path}
        )
