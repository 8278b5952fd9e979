"""Sync run lifecycle tracking in DynamoDB."""
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.models import SyncResult
from storage.dynamodb_manager import _plain

logger = logging.getLogger(__name__)

SYNC_TYPES = ('manual', 'scheduled', 'full', 'incremental', 'daily', 'hourly', 'range', 'custom', 'ics')

PENDING = 'pending'
IN_PROGRESS = 'in_progress'
COMPLETED = 'completed'
FAILED = 'failed'


class InvalidStatusTransition(Exception):
    """A sync status update was attempted from the wrong state."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _result_to_item(result: SyncResult) -> Dict[str, Any]:
    return {
        'events_processed': result.events_processed,
        'events_created': result.events_created,
        'events_updated': result.events_updated,
        'events_deleted': result.events_deleted,
        'events_skipped': result.events_skipped,
        'errors': list(result.errors)
    }


class SyncStatusTracker:
    """
    Records each sync run as it moves through
    pending -> in_progress -> completed | failed.
    """

    def __init__(self, table_name: str, dynamodb_resource=None):
        self.table_name = table_name
        self.dynamodb = dynamodb_resource or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)

    def create_sync_status(
        self,
        sync_type: str,
        request_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Create a pending sync status record.

        Returns:
            The new sync id
        """
        if sync_type not in SYNC_TYPES:
            raise ValueError(f"Unknown sync type: {sync_type}")

        sync_id = str(uuid.uuid4())
        item = {
            'id': sync_id,
            'type': sync_type,
            'status': PENDING,
            'timestamp': _now_ms(),
            'created_time': datetime.now(timezone.utc).isoformat()
        }
        if request_id:
            item['request_id'] = request_id
        if metadata:
            item['metadata'] = metadata

        self.table.put_item(Item=item)
        logger.info(f"Created sync status record: {sync_id} (type: {sync_type})")
        return sync_id

    def start_sync(self, sync_id: str, initial_progress: Optional[Dict[str, Any]] = None) -> None:
        values = {':status': IN_PROGRESS, ':start_time': datetime.now(timezone.utc).isoformat()}
        expression = 'SET #status = :status, #start_time = :start_time'
        if initial_progress:
            expression += ', #progress = :progress'
            values[':progress'] = initial_progress

        self._transition(sync_id, PENDING, expression, values)
        logger.info(f"Started sync: {sync_id}")

    def update_progress(
        self,
        sync_id: str,
        current_step: str,
        total_steps: int,
        completed_steps: int
    ) -> None:
        percentage = round(completed_steps * 100 / total_steps) if total_steps else 0
        progress = {
            'current_step': current_step,
            'total_steps': total_steps,
            'completed_steps': completed_steps,
            'percentage': percentage
        }
        self._transition(sync_id, IN_PROGRESS, 'SET #progress = :progress', {':progress': progress})

    def complete_sync_success(self, sync_id: str, result: SyncResult) -> None:
        duration = self._elapsed_ms(sync_id)
        self._transition(
            sync_id,
            IN_PROGRESS,
            'SET #status = :status, #end_time = :end_time, #duration = :duration, #result = :result',
            {
                ':status': COMPLETED,
                ':end_time': datetime.now(timezone.utc).isoformat(),
                ':duration': duration,
                ':result': _result_to_item(result)
            }
        )
        logger.info(f"Completed sync: {sync_id} (duration: {duration}ms)")

    def complete_sync_failure(
        self,
        sync_id: str,
        error: str,
        partial_result: Optional[SyncResult] = None
    ) -> None:
        duration = self._elapsed_ms(sync_id)
        expression = 'SET #status = :status, #end_time = :end_time, #duration = :duration, #error = :error'
        values = {
            ':status': FAILED,
            ':end_time': datetime.now(timezone.utc).isoformat(),
            ':duration': duration,
            ':error': error
        }
        if partial_result is not None:
            expression += ', #result = :result'
            values[':result'] = _result_to_item(partial_result)

        self._transition(sync_id, IN_PROGRESS, expression, values)
        logger.info(f"Failed sync: {sync_id} (duration: {duration}ms, error: {error})")

    def get_sync_status(self, sync_id: str) -> Optional[Dict[str, Any]]:
        response = self.table.get_item(Key={'id': sync_id})
        item = response.get('Item')
        return _plain(item) if item else None

    def get_recent_sync_statuses(self, sync_type: Optional[str] = None, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent records first, optionally of a single type."""
        condition = Attr('type').eq(sync_type) if sync_type else None
        records = self._scan(condition)
        records.sort(key=lambda record: record['timestamp'], reverse=True)
        return records[:limit]

    def get_active_syncs(self) -> List[Dict[str, Any]]:
        records = self._scan(Attr('status').is_in([PENDING, IN_PROGRESS]))
        records.sort(key=lambda record: record['timestamp'], reverse=True)
        return records

    def get_sync_statistics(self, days: int = 7) -> Dict[str, Any]:
        """Aggregate the runs recorded in the last ``days`` days."""
        cutoff = _now_ms() - days * 24 * 60 * 60 * 1000
        records = self._scan(Attr('timestamp').gte(cutoff))
        records.sort(key=lambda record: record['timestamp'], reverse=True)

        completed = [r for r in records if r['status'] == COMPLETED]
        failed = [r for r in records if r['status'] == FAILED]
        durations = [r['duration'] for r in completed if r.get('duration')]

        syncs_by_type: Dict[str, int] = {}
        for record in records:
            syncs_by_type[record['type']] = syncs_by_type.get(record['type'], 0) + 1

        return {
            'total_syncs': len(records),
            'successful_syncs': len(completed),
            'failed_syncs': len(failed),
            'average_duration': sum(durations) / len(durations) if durations else 0,
            'syncs_by_type': syncs_by_type,
            'recent_syncs': records[:10]
        }

    def cleanup_old_records(self, days_to_keep: int = 30) -> int:
        cutoff = _now_ms() - days_to_keep * 24 * 60 * 60 * 1000
        old_records = self._scan(Attr('timestamp').lt(cutoff))

        deleted = 0
        for record in old_records:
            try:
                self.table.delete_item(Key={'id': record['id']})
                deleted += 1
            except ClientError as e:
                logger.error(f"Failed to delete sync record {record['id']}: {e}")

        logger.info(f"Cleaned up {deleted} old sync records")
        return deleted

    def _transition(
        self,
        sync_id: str,
        expected_status: str,
        update_expression: str,
        values: Dict[str, Any]
    ) -> None:
        """Apply an update only if the record is in the expected state."""
        names = {'#status': 'status'}
        for placeholder in ('#start_time', '#end_time', '#progress', '#duration', '#result', '#error'):
            if placeholder in update_expression:
                names[placeholder] = placeholder[1:]

        try:
            self.table.update_item(
                Key={'id': sync_id},
                UpdateExpression=update_expression,
                ConditionExpression='#status = :expected',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues={**values, ':expected': expected_status}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise InvalidStatusTransition(
                    f"Sync {sync_id} is not {expected_status}"
                ) from e
            logger.error(f"Error updating sync status {sync_id}: {e}")
            raise

    def _elapsed_ms(self, sync_id: str) -> int:
        record = self.get_sync_status(sync_id)
        if not record or not record.get('start_time'):
            return 0
        started = datetime.fromisoformat(record['start_time'])
        return int((datetime.now(timezone.utc) - started).total_seconds() * 1000)

    def _scan(self, condition=None) -> List[Dict[str, Any]]:
        kwargs = {'FilterExpression': condition} if condition is not None else {}
        response = self.table.scan(**kwargs)
        items = response.get('Items', [])
        while 'LastEvaluatedKey' in response:
            response = self.table.scan(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
            items.extend(response.get('Items', []))
        return [_plain(item) for item in items]
