import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest


# Ensure the repository root is importable as a package root (so `import content_approval` works).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from content_approval.approval.errors import ContentNotFoundError  # noqa: E402
from content_approval.approval.repository import InMemoryApprovalRecordStore  # noqa: E402
from content_approval.approval.schemas import WorkflowConfig  # noqa: E402


class FakeContentStore:
    """Host content store double that records every call"""

    def __init__(self):
        self.published: Dict[str, Dict[str, Any]] = {}
        self.publish_calls: List[Dict[str, Any]] = []
        self.unpublish_calls: List[str] = []
        self.publish_error: Optional[Exception] = None
        self.unpublish_error: Optional[Exception] = None
        self.delay: float = 0.0
        self._counter = 0

    async def publish(self, payload: Dict[str, Any]) -> str:
        self.publish_calls.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.publish_error is not None:
            raise self.publish_error
        self._counter += 1
        reference = f"content-{self._counter}"
        self.published[reference] = payload
        return reference

    async def unpublish(self, reference: str) -> None:
        self.unpublish_calls.append(reference)
        if self.unpublish_error is not None:
            raise self.unpublish_error
        if reference not in self.published:
            raise ContentNotFoundError(reference)
        del self.published[reference]


class FixedClock:
    """Settable clock for time-relative behavior"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def content_store():
    return FakeContentStore()


@pytest.fixture
def record_store():
    return InMemoryApprovalRecordStore()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def workflow_config():
    return WorkflowConfig(
        auto_approval_threshold=0.8,
        review_sla_hours=24,
        bulk_operation_limit=10,
        bulk_max_workers=4,
        publish_timeout_sec=0.5,
        conflict_retries=1,
        default_page_size=20,
        max_page_size=50,
    )
