from __future__ import annotations

import logging

from ..lib.storage import PartitionPlan, partition_and_format
from ..lib.validators import validate_partitions
from ..pipeline import StepContext

logger = logging.getLogger(__name__)


class PartitionStep:
    step_id = "01-partition"

    def run(self, ctx: StepContext) -> bool:
        disk = ctx.config.disk
        if not disk:
            raise RuntimeError("config.disk is required for partitioning")

        if not ctx.dry_run and validate_partitions(disk):
            logger.warning("Disk appears to already be partitioned correctly")
            if not ctx.confirm("Repartition anyway? This will DESTROY ALL DATA"):
                logger.info("Skipping partitioning")
                return True

        partition_and_format(PartitionPlan(disk=disk), dry_run=ctx.dry_run)

        return ctx.dry_run or validate_partitions(disk)
