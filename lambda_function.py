"""AWS Lambda handler for the Chautauqua calendar sync."""
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import boto3

from config import SyncConfig
from processor.event_normalizer import EventNormalizer
from processor.heuristics import HeuristicTables
from processor.models import DateRange, SyncResult
from sources.events_calendar_api import EventsCalendarApiClient
from sources.ics_feed import IcsFeedAdapter
from sources.response_cache import ResponseCache
from storage.dynamodb_manager import DynamoDBManager
from storage.sync_status_tracker import SyncStatusTracker
from sync.sync_engine import SyncEngine

# EventBridge rule detail-type -> sync type
SCHEDULED_SYNC_TYPES = {
    'Hourly Sync': 'hourly',
    'Daily Sync': 'daily',
    'Weekly Full Sync': 'season',
}

SYNC_TYPES = ('incremental', 'season', 'range', 'hourly', 'daily', 'custom', 'ics')

# Reused across warm invocations so the response cache survives
_sync_engine: Optional[SyncEngine] = None


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    RESERVED = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any ``extra`` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in self.RESERVED and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


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


class BadRequest(ValueError):
    """The invocation payload does not describe a runnable request."""


def build_sync_engine(config: SyncConfig) -> SyncEngine:
    """Wire the adapters, normalizer, store and tracker from configuration."""
    resource_kwargs = {}
    if config.aws_region:
        resource_kwargs['region_name'] = config.aws_region
    if config.dynamodb_endpoint:
        resource_kwargs['endpoint_url'] = config.dynamodb_endpoint
    dynamodb = boto3.resource('dynamodb', **resource_kwargs)

    tables = HeuristicTables.from_file(config.heuristics_path) if config.heuristics_path else None
    normalizer = EventNormalizer(tables=tables, default_timezone=config.default_timezone)

    status_tracker = None
    if config.sync_status_table_name:
        status_tracker = SyncStatusTracker(config.sync_status_table_name, dynamodb_resource=dynamodb)

    return SyncEngine(
        store=DynamoDBManager(config.events_table_name, dynamodb_resource=dynamodb),
        api_client=EventsCalendarApiClient(
            base_url=config.api_base_url,
            timeout=config.timeout_seconds,
            cache=ResponseCache(default_ttl=config.cache_ttl_seconds)
        ),
        normalizer=normalizer,
        status_tracker=status_tracker,
        ics_adapter=IcsFeedAdapter(
            base_url=config.ics_base_url,
            timeout=config.timeout_seconds,
            normalizer=normalizer
        )
    )


def get_sync_engine(config: SyncConfig) -> SyncEngine:
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = build_sync_engine(config)
    return _sync_engine


def _required(payload: Dict[str, Any], key: str) -> Any:
    if not payload.get(key):
        raise BadRequest(f"Missing required parameter: {key}")
    return payload[key]


def _parse_range(payload: Dict[str, Any]) -> DateRange:
    try:
        date_range = DateRange.parse(_required(payload, 'start_date'), _required(payload, 'end_date'))
    except (TypeError, ValueError) as e:
        if isinstance(e, BadRequest):
            raise
        raise BadRequest(f"Invalid date range: {e}") from e
    if date_range.end < date_range.start:
        raise BadRequest(f"Invalid date range: {date_range.end} is before {date_range.start}")
    return date_range


def resolve_sync_request(event: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Work out which sync an invocation asks for.

    EventBridge events are mapped through their detail-type; manual
    invocations name a ``sync_type`` and default to incremental.

    Returns:
        (sync_type, payload)
    """
    if event.get('source') == 'aws.events':
        return SCHEDULED_SYNC_TYPES.get(event.get('detail-type'), 'incremental'), event.get('detail') or {}
    return event.get('sync_type', 'incremental'), event


def select_sync_run(
    engine: SyncEngine,
    sync_type: str,
    payload: Dict[str, Any],
    config: SyncConfig
) -> Callable[[], SyncResult]:
    """
    Validate the request and return the run to perform.

    Raises:
        BadRequest: For unknown sync types or missing/invalid parameters
    """
    try:
        year = int(payload.get('year') or config.season_year or 0) or None
    except (TypeError, ValueError) as e:
        raise BadRequest(f"Invalid year: {payload.get('year')}") from e

    if sync_type == 'incremental':
        return engine.sync_incremental
    if sync_type == 'hourly':
        return engine.sync_hourly
    if sync_type == 'daily':
        return lambda: engine.sync_daily(year)
    if sync_type == 'season':
        return lambda: engine.sync_season(year)
    if sync_type == 'range':
        date_range = _parse_range(payload)
        return lambda: engine.sync_range(date_range)
    if sync_type == 'custom':
        date_range = _parse_range(payload)
        return lambda: engine.sync_custom_range(date_range.start, date_range.end)
    if sync_type == 'ics':
        force_update = bool(payload.get('force_update', False))
        if payload.get('ics_text'):
            return lambda: engine.sync_ics_feed(payload['ics_text'], force_update)
        try:
            month = int(_required(payload, 'month'))
            ics_year = int(_required(payload, 'year'))
        except (TypeError, ValueError) as e:
            if isinstance(e, BadRequest):
                raise
            raise BadRequest(f"Invalid ICS month: {e}") from e
        return lambda: engine.sync_ics_month(ics_year, month, force_update)

    raise BadRequest(f"Unknown sync type: {sync_type}. Expected one of {', '.join(SYNC_TYPES)}")


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body, default=str)}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the calendar sync.

    Args:
        event: EventBridge event, or a manual payload with ``sync_type``
            (and its parameters) or ``action`` (``health``, ``clear_cache``)
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body
    """
    config = SyncConfig.from_env()
    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)
    event = event or {}

    start_time = time.time()
    logger.info(
        "Lambda execution started",
        extra={
            'request_id': getattr(context, 'aws_request_id', None),
            'table_name': config.events_table_name,
            'event_source': event.get('source', 'manual')
        }
    )

    try:
        engine = get_sync_engine(config)

        action = event.get('action')
        if action == 'health':
            health = engine.get_health_status()
            return _response(200 if health['healthy'] else 500, health)
        if action == 'clear_cache':
            engine.clear_cache()
            return _response(200, {'message': 'Cache cleared successfully'})

        sync_type, payload = resolve_sync_request(event)
        run = select_sync_run(engine, sync_type, payload, config)

        logger.info(f"Starting {sync_type} sync")
        result = run()
        duration = time.time() - start_time

        logger.info(
            "Lambda execution completed",
            extra={
                'sync_type': sync_type,
                'success': result.success,
                'duration_seconds': round(duration, 2),
                'events_processed': result.events_processed,
                'events_created': result.events_created,
                'events_updated': result.events_updated,
                'events_deleted': result.events_deleted,
                'errors': result.errors
            }
        )

        return _response(200 if result.success else 500, {
            'message': 'Sync completed successfully' if result.success else 'Sync completed with errors',
            'sync_type': sync_type,
            'result': result.to_dict(),
            'duration_seconds': round(duration, 2)
        })

    except BadRequest as e:
        logger.warning(f"Rejected invocation: {e}")
        return _response(400, {'message': 'Bad request', 'error': str(e)})

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _response(500, {
            'message': 'Sync failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })
