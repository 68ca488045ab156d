from datetime import datetime, timezone

from domain.batch import BatchId, VesselId

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)

BATCH_A = BatchId("batch-a")
BATCH_B = BatchId("batch-b")
BATCH_C = BatchId("batch-c")
PARENT = BatchId("parent")
CHILD = BatchId("child")

BIG_TANK = VesselId("tank-1000")
SMALL_TANK = VesselId("tank-500")
