"""Apply a sequence diff to a device's numbered filter table.

The router has no transactions. Every operation here is independently
idempotent, so a pass that fails halfway is repaired by running the same
lifecycle step again.
"""
import logging
from typing import Mapping

from ..devices.base import DeviceNotFoundError, FilterDevice
from ..utils.logging_config import timed_section
from .errors import DeviceOperationError
from .schema import FilterPayload, FilterTable, SequenceDiff, SyncResult

logger = logging.getLogger(__name__)


class DeviceSync:
    """Issue deletes and defines for one group's numbers."""

    def __init__(self, device: FilterDevice):
        self.device = device

    async def sync(
        self,
        table: FilterTable,
        diff: SequenceDiff,
        payloads: Mapping[int, FilterPayload]
    ) -> SyncResult:
        """
        Apply a diff.

        Deletes run first, then every current number is defined in entry
        order. A delete that reports "not found" counts as done. The first
        other failure aborts the pass; nothing already applied is rolled back.

        Args:
            table: Filter table the numbers live in
            diff: Output of SequenceDiffer.diff
            payloads: Payload for every number in diff.to_upsert

        Returns:
            SyncResult listing what was done

        Raises:
            DeviceOperationError: On the first hard device failure, with the
                partial progress attached
        """
        result = SyncResult()

        async with timed_section(
            "filter_sync",
            device_id=self.device.device_id,
            table=table.value,
            delete=len(diff.to_delete),
            define=len(diff.to_upsert),
        ):
            for number in diff.to_delete:
                try:
                    await self.device.delete_entry(table, number)
                except DeviceNotFoundError:
                    logger.debug(f"{table.value} filter {number} already absent")
                    result.already_absent.append(number)
                    continue
                except Exception as e:
                    logger.error(f"Delete of {table.value} filter {number} failed: {e}")
                    raise DeviceOperationError("delete", number, e, completed=result) from e
                result.deleted.append(number)

            for number in diff.to_upsert:
                payload = payloads[number]
                try:
                    await self.device.create_or_update_entry(table, number, payload)
                except Exception as e:
                    logger.error(f"Define of {table.value} filter {number} failed: {e}")
                    raise DeviceOperationError("define", number, e, completed=result) from e
                result.upserted.append(number)

        logger.info(
            f"Synced {table.value} filters on {self.device.device_id}: "
            f"{len(result.deleted)} deleted, {len(result.already_absent)} already absent, "
            f"{len(result.upserted)} defined"
        )
        return result
