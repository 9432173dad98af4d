"""AWS Lambda handler for recurring series instance sync."""
import json
import logging
import os
import time
from datetime import datetime, timedelta
from itertools import islice
from typing import Dict, Any
from zoneinfo import ZoneInfo

from recurrence.formatting import format_recurrence
from recurrence.instance_reconciler import reconcile
from recurrence.models import EndType, MissingField, InvalidFormat
from recurrence.occurrence_generator import generate
from recurrence.rule_normalizer import normalize
from storage.dynamodb_manager import DynamoDBManager


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body)}


def _error_response(status_code, message, error, start_time, **extra):
    body = {
        'message': message,
        'error': str(error),
        'error_type': type(error).__name__,
        'duration_seconds': round(time.time() - start_time, 2)
    }
    body.update(extra)
    return _response(status_code, body)


def _resolve_window(event, timezone_name, window_days):
    """Window start from the request, or now in the series' timezone."""
    tz = ZoneInfo(timezone_name)
    raw_start = event.get('window_start')
    if raw_start:
        window_start = datetime.fromisoformat(raw_start)
        if window_start.tzinfo is None:
            window_start = window_start.replace(tzinfo=tz)
    else:
        window_start = datetime.now(tz)

    days = int(event.get('window_days') or window_days)
    return window_start, window_start + timedelta(days=days)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for series instance sync.

    Args:
        event: Sync request with series_id, recurrence_rule and optional
            start_date, timezone, window_start, window_days and dry_run
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    # Read configuration from environment variables
    table_name = os.environ.get('TABLE_NAME', 'series-events')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    window_days = int(os.environ.get('WINDOW_DAYS', '84'))
    max_occurrences = int(os.environ.get('MAX_OCCURRENCES', '52'))
    default_timezone = os.environ.get('DEFAULT_TIMEZONE', 'America/Chicago')
    initial_status = os.environ.get('INITIAL_STATUS', 'pending_review')

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    event = event or {}
    series_id = event.get('series_id')
    dry_run = bool(event.get('dry_run', False))
    logger.info(
        "Series sync started",
        extra={
            'table_name': table_name,
            'series_id': series_id,
            'window_days': window_days,
            'dry_run': dry_run
        }
    )

    if not series_id:
        return _response(400, {
            'message': 'Invalid sync request',
            'errors': [MissingField('series_id', 'series_id is required').to_dict()]
        })

    # Series-level fields fill in what the stored rule leaves out
    raw_rule = event.get('recurrence_rule')
    if isinstance(raw_rule, dict):
        raw_rule = dict(raw_rule)
        for key in ('start_date', 'timezone'):
            if event.get(key) and not raw_rule.get(key):
                raw_rule[key] = event[key]
        if not raw_rule.get('timezone'):
            raw_rule['timezone'] = default_timezone

    result = normalize(raw_rule)
    if not result.ok:
        logger.warning(
            f"Rejected recurrence rule for series {series_id}",
            extra={'errors': [e.to_dict() for e in result.errors]}
        )
        return _response(400, {
            'message': 'Invalid recurrence rule',
            'errors': [e.to_dict() for e in result.errors]
        })
    rule = result.rule

    # A count-terminated series needs a fixed anchor to count from
    if rule.end_type == EndType.COUNT and rule.start_date is None:
        error = MissingField(
            'start_date', 'start_date is required when end_type is "count"'
        )
        logger.warning(
            f"Rejected recurrence rule for series {series_id}",
            extra={'errors': [error.to_dict()]}
        )
        return _response(400, {
            'message': 'Invalid recurrence rule',
            'errors': [error.to_dict()]
        })

    try:
        window_start, window_end = _resolve_window(event, rule.timezone, window_days)
    except (TypeError, ValueError) as e:
        return _response(400, {
            'message': 'Invalid sync request',
            'errors': [InvalidFormat('window_start', str(e)).to_dict()]
        })

    try:
        dynamodb_manager = DynamoDBManager(
            table_name=table_name, initial_status=initial_status
        )

        try:
            logger.info(f"Loading existing instances for series {series_id}")
            existing = dynamodb_manager.get_series_instances(series_id)
        except Exception as e:
            logger.error(
                f"Failed to load instances for series {series_id}: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return _error_response(
                500, 'Failed to load series instances', e, start_time
            )

        logger.info(
            f"Generating occurrences from {window_start.isoformat()} "
            f"to {window_end.isoformat()}"
        )
        occurrences = list(
            islice(generate(rule, window_start, window_end), max_occurrences)
        )
        if occurrences and len(occurrences) == max_occurrences:
            logger.warning(
                f"Generation capped at {max_occurrences} occurrences for series {series_id}"
            )
            window_end = occurrences[-1].start

        plan = reconcile(occurrences, existing, window_start, window_end)

        statistics = {
            'occurrences_generated': len(occurrences),
            'existing_instances': len(existing),
            'to_create': len(plan.to_create),
            'to_retire': len(plan.to_retire),
            'unchanged': len(plan.unchanged),
        }

        if dry_run:
            statistics['duration_seconds'] = round(time.time() - start_time, 2)
            return _response(200, {
                'message': 'Dry run completed',
                'summary': format_recurrence(rule),
                'statistics': statistics,
                'plan': {
                    'to_create': [o.instance_date.isoformat() for o in plan.to_create],
                    'to_retire': [i.event_id for i in plan.to_retire],
                },
                'errors': []
            })

        try:
            logger.info("Applying reconciliation plan to DynamoDB")
            sync_result = dynamodb_manager.sync_series(series_id, plan)
        except Exception as e:
            # Leave stored instances as they are
            logger.error(
                f"Error during DynamoDB sync operation: {str(e)}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
            return _error_response(
                500, 'Failed to sync series instances', e, start_time,
                note='Previous instances remain in DynamoDB'
            )

        duration = time.time() - start_time
        statistics.update({
            'created': sync_result.created,
            'retired': sync_result.retired,
            'resequenced': sync_result.resequenced,
            'duration_seconds': round(duration, 2)
        })

        logger.info(
            "Series sync completed successfully",
            extra={
                'series_id': series_id,
                'statistics': statistics,
                'errors': sync_result.errors
            }
        )

        return _response(200, {
            'message': 'Sync completed successfully',
            'summary': format_recurrence(rule),
            'statistics': statistics,
            'errors': sync_result.errors
        })

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Series sync failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _error_response(500, 'Sync failed', e, start_time)
