"""DynamoDB manager for series event instance storage."""
import hashlib
import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Dict, List, Set

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from recurrence.models import (
    EventInstance,
    EventStatus,
    OccurrenceTimestamp,
    ReconcileResult,
    SyncResult,
)
from recurrence.series_numbering import changed_sequences, renumber

logger = logging.getLogger(__name__)


class DynamoDBManager:
    """Manager for DynamoDB operations on event instances."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    SERIES_INDEX = 'series-index'

    def __init__(self, table_name: str, initial_status: str = EventStatus.PENDING_REVIEW.value):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            initial_status: Status given to newly generated instances
        """
        self.table_name = table_name
        self.initial_status = EventStatus(initial_status)
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    def get_series_instances(self, series_id: str) -> List[EventInstance]:
        """
        Retrieve all instances of a series through the series index.

        Args:
            series_id: Owning series identifier

        Returns:
            List of EventInstance objects ordered by instance_date
        """
        logger.info(f"Querying instances for series: {series_id}")
        query_args = {
            'IndexName': self.SERIES_INDEX,
            'KeyConditionExpression': Key('series_id').eq(series_id),
        }

        try:
            response = self.table.query(**query_args)
            items = response.get('Items', [])

            # Handle pagination
            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **query_args
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error querying instances for series {series_id}: {e}")
            raise

        instances = []
        for item in items:
            instance = self._item_to_instance(item)
            if instance:
                instances.append(instance)

        logger.info(f"Retrieved {len(instances)} instances for series {series_id}")
        return instances

    def sync_series(self, series_id: str, plan: ReconcileResult) -> SyncResult:
        """
        Apply a reconciliation plan to the table.

        New occurrences become instances, retired instances are marked
        cancelled (never deleted), and sequence numbers are recomputed for
        the resulting set so only rows whose number moved are rewritten.

        Args:
            series_id: Series the plan belongs to
            plan: Output of ``reconcile``

        Returns:
            SyncResult with counts of created, retired and resequenced rows
        """
        logger.info(
            f"Applying plan for series {series_id}: "
            f"{len(plan.to_create)} to create, {len(plan.to_retire)} to retire"
        )
        errors: List[str] = []

        existing = plan.unchanged + plan.to_retire

        # A moved instance keeps the id derived from its original date
        taken_ids = {instance.event_id for instance in existing}
        new_instances = []
        for occ in plan.to_create:
            instance = self.instance_from_occurrence(series_id, occ, taken_ids)
            taken_ids.add(instance.event_id)
            new_instances.append(instance)

        retired_instances = [
            replace(instance, status=EventStatus.CANCELLED)
            for instance in plan.to_retire
        ]

        numbered = renumber(plan.unchanged + retired_instances + new_instances)
        by_id: Dict[str, EventInstance] = {i.event_id: i for i in numbered}

        created_count = self.batch_write_instances(
            [by_id[i.event_id] for i in new_instances], errors
        )
        retired_count = self.retire_instances(
            [by_id[i.event_id] for i in retired_instances], errors
        )

        retired_ids = {i.event_id for i in retired_instances}
        moved = [
            instance for instance in changed_sequences(existing, numbered)
            if instance.event_id not in retired_ids
        ]
        resequenced_count = self.update_sequences(moved, errors)

        logger.info(
            f"Sync complete for series {series_id}: {created_count} created, "
            f"{retired_count} retired, {resequenced_count} resequenced"
        )

        return SyncResult(
            created=created_count,
            retired=retired_count,
            resequenced=resequenced_count,
            errors=errors
        )

    def batch_write_instances(self, instances: List[EventInstance], errors: List[str] = None) -> int:
        """
        Write instances to DynamoDB in batches of 25 items.

        Args:
            instances: EventInstance objects to write
            errors: Optional list collecting error messages

        Returns:
            Count of successfully written instances
        """
        if not instances:
            return 0

        logger.info(f"Writing {len(instances)} instances to DynamoDB")
        success_count = 0

        # Process in batches of 25 (DynamoDB limit)
        for i in range(0, len(instances), self.BATCH_SIZE):
            batch = instances[i:i + self.BATCH_SIZE]

            try:
                with self.table.batch_writer() as writer:
                    for instance in batch:
                        writer.put_item(Item=self._instance_to_item(instance))
                success_count += len(batch)

            except ClientError as e:
                error_msg = f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                logger.error(error_msg)
                if errors is not None:
                    errors.append(error_msg)
                # Continue processing remaining batches
                continue

        logger.info(f"Successfully wrote {success_count} instances")
        return success_count

    def retire_instances(self, instances: List[EventInstance], errors: List[str] = None) -> int:
        """
        Mark instances as cancelled and clear their sequence number.

        Returns:
            Count of successfully retired instances
        """
        success_count = 0
        for instance in instances:
            try:
                self.table.update_item(
                    Key={'event_id': instance.event_id},
                    UpdateExpression='SET #status = :status REMOVE series_sequence',
                    ExpressionAttributeNames={'#status': 'status'},
                    ExpressionAttributeValues={':status': EventStatus.CANCELLED.value}
                )
                success_count += 1
            except ClientError as e:
                error_msg = f"Error retiring instance {instance.event_id}: {e}"
                logger.error(error_msg)
                if errors is not None:
                    errors.append(error_msg)

        if instances:
            logger.info(f"Retired {success_count} of {len(instances)} instances")
        return success_count

    def update_sequences(self, instances: List[EventInstance], errors: List[str] = None) -> int:
        """
        Persist new series_sequence values.

        Returns:
            Count of successfully updated instances
        """
        success_count = 0
        for instance in instances:
            try:
                if instance.series_sequence is None:
                    self.table.update_item(
                        Key={'event_id': instance.event_id},
                        UpdateExpression='REMOVE series_sequence'
                    )
                else:
                    self.table.update_item(
                        Key={'event_id': instance.event_id},
                        UpdateExpression='SET series_sequence = :seq',
                        ExpressionAttributeValues={':seq': instance.series_sequence}
                    )
                success_count += 1
            except ClientError as e:
                error_msg = f"Error updating sequence of {instance.event_id}: {e}"
                logger.error(error_msg)
                if errors is not None:
                    errors.append(error_msg)

        if instances:
            logger.info(f"Resequenced {success_count} of {len(instances)} instances")
        return success_count

    def instance_from_occurrence(
        self,
        series_id: str,
        occurrence: OccurrenceTimestamp,
        taken_ids: Set[str] = frozenset()
    ) -> EventInstance:
        """Build a not-yet-stored instance for a generated occurrence."""
        return EventInstance(
            event_id=self.generate_event_id(series_id, occurrence.instance_date, taken_ids),
            series_id=series_id,
            instance_date=occurrence.instance_date,
            start_datetime=occurrence.start,
            end_datetime=occurrence.end,
            status=self.initial_status
        )

    def generate_event_id(
        self,
        series_id: str,
        instance_date: date,
        taken_ids: Set[str] = frozenset()
    ) -> str:
        """
        Generate a stable identifier for a series instance using hash of
        series_id + instance_date.

        An instance moved off its date keeps its old id, so the id for that
        date can already be in use. A counter is then appended to the hash
        input until the id is free.

        Args:
            series_id: Owning series identifier
            instance_date: Local calendar date of the instance
            taken_ids: Ids already held by rows of the series

        Returns:
            Event ID (SHA256 hash)
        """
        composite = f"{series_id}|{instance_date.isoformat()}"
        event_id = hashlib.sha256(composite.encode('utf-8')).hexdigest()
        attempt = 0
        while event_id in taken_ids:
            attempt += 1
            salted = f"{composite}|{attempt}"
            event_id = hashlib.sha256(salted.encode('utf-8')).hexdigest()
        return event_id

    def _item_to_instance(self, item: dict) -> EventInstance:
        """
        Convert DynamoDB item to EventInstance object.

        Returns:
            EventInstance object or None if conversion fails
        """
        try:
            sequence = item.get('series_sequence')
            return EventInstance(
                event_id=item['event_id'],
                series_id=item.get('series_id'),
                instance_date=date.fromisoformat(item['instance_date']),
                start_datetime=_parse_datetime(item.get('start_datetime')),
                end_datetime=_parse_datetime(item.get('end_datetime')),
                series_sequence=int(sequence) if sequence is not None else None,
                status=EventStatus(item.get('status', EventStatus.DRAFT.value)),
                is_manual_override=bool(item.get('is_manual_override', False))
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to EventInstance: {e}")
            return None

    def _instance_to_item(self, instance: EventInstance) -> dict:
        """Convert EventInstance object to DynamoDB item."""
        item = {
            'event_id': instance.event_id,
            'instance_date': instance.instance_date.isoformat(),
            'status': instance.status.value,
            'is_manual_override': instance.is_manual_override,
            'is_series_instance': instance.series_id is not None
        }

        # Add optional fields if present
        if instance.series_id:
            item['series_id'] = instance.series_id
        if instance.start_datetime:
            item['start_datetime'] = instance.start_datetime.isoformat()
        if instance.end_datetime:
            item['end_datetime'] = instance.end_datetime.isoformat()
        if instance.series_sequence is not None:
            item['series_sequence'] = instance.series_sequence

        return item


def _parse_datetime(value):
    if not value:
        return None
    return datetime.fromisoformat(value)
