"""
Bookkeeping for failures the service absorbs instead of propagating.

Nothing here retries or recovers. Callers decide how to degrade (empty feed,
zero score, previous cache entry kept); the handler classifies what happened,
writes one structured log record and keeps a bounded history so a run of the
same failure can be reported.
"""

import json
import logging
import traceback
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple


class ErrorSeverity(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ServiceType(Enum):
    """How much the served feed depends on a component"""
    CRITICAL = "critical"
    IMPORTANT = "important"
    OPTIONAL = "optional"


@dataclass
class ErrorContext:
    """One recorded failure"""
    error_type: str
    error_message: str
    stack_trace: str
    timestamp: datetime
    service: str
    operation: str
    severity: str
    recovery_action: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


SERVICE_CRITICALITY: Dict[str, ServiceType] = {
    'store': ServiceType.CRITICAL,
    'pipeline': ServiceType.IMPORTANT,
    'feed': ServiceType.IMPORTANT,
    'score': ServiceType.OPTIONAL,
}

# (failure kind, service criticality) -> severity
_SEVERITY_TABLE = {
    ('connection', ServiceType.CRITICAL): ErrorSeverity.CRITICAL,
    ('connection', ServiceType.IMPORTANT): ErrorSeverity.MEDIUM,
    ('connection', ServiceType.OPTIONAL): ErrorSeverity.LOW,
    ('timeout', ServiceType.CRITICAL): ErrorSeverity.HIGH,
    ('timeout', ServiceType.IMPORTANT): ErrorSeverity.MEDIUM,
    ('timeout', ServiceType.OPTIONAL): ErrorSeverity.LOW,
    ('throttled', ServiceType.CRITICAL): ErrorSeverity.MEDIUM,
    ('throttled', ServiceType.IMPORTANT): ErrorSeverity.MEDIUM,
    ('throttled', ServiceType.OPTIONAL): ErrorSeverity.LOW,
    ('other', ServiceType.CRITICAL): ErrorSeverity.HIGH,
    ('other', ServiceType.IMPORTANT): ErrorSeverity.MEDIUM,
    ('other', ServiceType.OPTIONAL): ErrorSeverity.LOW,
}

_RECOVERY_HINTS = {
    'connection': "Check network connectivity and the upstream site's status; the next warm will retry.",
    'timeout': "Request timed out. Raise REQUEST_TIMEOUT or check upstream latency.",
    'throttled': "Upstream is throttling. Raise RATE_LIMIT_DELAY_MS or RETRY_DELAY_MS.",
    'store': "Cache store failed. Check DATABASE_PATH permissions and free disk space.",
}

_CONNECTION_ERRORS = ('ClientConnectorError', 'ClientConnectionError', 'ConnectionError', 'ClientResponseError')

PATTERN_THRESHOLD = 3


def failure_kind(error: Exception) -> str:
    """Bucket an exception into connection, timeout, throttled, store or other."""
    name = type(error).__name__
    message = str(error).lower()
    if 'rate limit' in message or 'throttled' in message:
        return 'throttled'
    if name == 'TimeoutError' or 'timeout' in message:
        return 'timeout'
    if name in _CONNECTION_ERRORS:
        return 'connection'
    if name == 'StoreError':
        return 'store'
    return 'other'


class ErrorHandler:
    def __init__(self, history_size: int = 100) -> None:
        self.service_criticality = dict(SERVICE_CRITICALITY)
        self.error_history: Deque[ErrorContext] = deque(maxlen=history_size)
        self.error_counts: Counter = Counter()
        self.logger = logging.getLogger(__name__)

    def handle_error(
        self,
        error: Exception,
        service: str,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorContext:
        """Classify, log and remember ``error``."""
        severity = self.classify_severity(error, service)
        record = ErrorContext(
            error_type=type(error).__name__,
            error_message=str(error),
            stack_trace=''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            timestamp=datetime.now(),
            service=service,
            operation=operation,
            severity=severity.value,
            recovery_action=self.get_recovery_suggestion(error),
            metadata=dict(context or {}),
        )

        self.error_history.append(record)
        self.error_counts[record.error_type] += 1

        self.logger.error(json.dumps({
            'event': 'error',
            'service': service,
            'operation': operation,
            'severity': record.severity,
            'error_type': record.error_type,
            'error_message': record.error_message,
            'timestamp': record.timestamp.isoformat(),
            'metadata': record.metadata,
        }, default=str))
        return record

    def classify_severity(self, error: Exception, service: str) -> ErrorSeverity:
        service_type = self.service_criticality.get(service, ServiceType.OPTIONAL)
        kind = failure_kind(error)
        if kind == 'store':
            kind = 'other'
        return _SEVERITY_TABLE[(kind, service_type)]

    def get_recovery_suggestion(self, error: Exception) -> Optional[str]:
        return _RECOVERY_HINTS.get(failure_kind(error))

    def repeated_errors(self) -> Dict[Tuple[str, str], int]:
        """(error type, service) pairs seen at least PATTERN_THRESHOLD times in the history."""
        counts = Counter((ctx.error_type, ctx.service) for ctx in self.error_history)
        return {key: count for key, count in counts.items() if count >= PATTERN_THRESHOLD}

    @staticmethod
    def describe_pattern(key: Tuple[str, str], count: int) -> str:
        error_type, service = key
        return f"Repeated pattern: {error_type} in {service} occurred {count} times recently"

    def detect_error_patterns(self) -> List[str]:
        return [self.describe_pattern(key, count) for key, count in self.repeated_errors().items()]

    def get_error_statistics(self) -> Dict[str, Any]:
        return {
            'total_errors': sum(self.error_counts.values()),
            'error_types': dict(self.error_counts),
        }
