"""
Service layer - business logic and orchestration.

Services contain the application's business logic, coordinate between
repositories, and talk to external collaborators (mail, live events).

RULE: Workers call services. Services call repositories. Never the reverse.
"""
from app.services.alert_processor import AlertProcessor, build_search_query
from app.services.event_sink import EventSink, NullEventSink, RedisEventSink
from app.services.mail_service import MailReceipt, MailTransport, SmtpMailTransport

__all__ = [
    "AlertProcessor",
    "build_search_query",
    "EventSink",
    "NullEventSink",
    "RedisEventSink",
    "MailReceipt",
    "MailTransport",
    "SmtpMailTransport",
]
