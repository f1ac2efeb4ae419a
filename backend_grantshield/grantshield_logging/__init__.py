"""
Structured logging for Backend GrantShield.

JSON logs with timestamp, application_id, event_type and check_type.
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_grantshield.grantshield_logging.logger import bind_application, get_logger

__all__ = ["bind_application", "get_logger"]
