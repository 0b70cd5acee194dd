import json
import os
import datetime
from typing import Dict, Any, List, Optional

from utils.logger import get_logger

logger = get_logger("error_manager")


class ErrorManager:
    """
    Rolling JSON log of generation errors and warnings.

    카디널리티 불일치, 일관성 경고, 프레임 실패 등 텔레메트리 이벤트를 기록합니다.
    """

    LOG_FILE = os.getenv("STORYFRAME_ERROR_LOG", "outputs/generation_errors.log")
    MAX_ENTRIES = 100

    @classmethod
    def log_error(
        cls,
        service: str,
        error_message: str,
        details: Any = None,
        severity: str = "error"
    ):
        """
        Log an error to the log file.

        Args:
            service: Name of the component (e.g., "ScriptGenerator", "FrameSynthesizer")
            error_message: Brief error description
            details: Additional context (dict, list, or exception)
            severity: Error severity ("warning", "error", "critical")
        """
        entry = {
            "timestamp": datetime.datetime.now().isoformat(),
            "service": service,
            "message": error_message,
            "details": cls._format_details(details),
            "severity": severity
        }

        log_dir = os.path.dirname(cls.LOG_FILE)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        try:
            logs = cls._read_logs()
            logs.append(entry)

            if len(logs) > cls.MAX_ENTRIES:
                logs = logs[-cls.MAX_ENTRIES:]

            with open(cls.LOG_FILE, 'w', encoding='utf-8') as f:
                json.dump(logs, f, indent=2, ensure_ascii=False)

        except OSError as e:
            logger.error(f"[ErrorManager] Failed to write error log: {e}")

        level = "warning" if severity == "warning" else "error"
        getattr(logger, level)(f"[{service}] {error_message}")

    @classmethod
    def _format_details(cls, details: Any) -> Optional[Any]:
        if details is None:
            return None
        if isinstance(details, (dict, list, str, int, float)):
            return details
        return str(details)

    @classmethod
    def _read_logs(cls) -> List[Dict]:
        if not os.path.exists(cls.LOG_FILE):
            return []
        try:
            with open(cls.LOG_FILE, 'r', encoding='utf-8') as f:
                content = f.read()
            return json.loads(content) if content.strip() else []
        except (OSError, json.JSONDecodeError):
            return []  # corrupted log is reset

    @classmethod
    def get_recent_errors(cls, limit: int = 20, service: Optional[str] = None) -> List[Dict]:
        """Get recent log entries, newest first."""
        logs = cls._read_logs()
        if service:
            logs = [entry for entry in logs if entry.get("service") == service]
        return sorted(logs, key=lambda x: x['timestamp'], reverse=True)[:limit]

    @classmethod
    def clear_logs(cls):
        """Clear the error log file."""
        if os.path.exists(cls.LOG_FILE):
            os.remove(cls.LOG_FILE)
