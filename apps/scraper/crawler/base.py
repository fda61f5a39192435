"""
Collaborator interfaces consumed by the cycle coordinator.
"""
from abc import ABC, abstractmethod
from typing import List

from core.cancellation import CancelSignal
from core.models import ItemResult, WorkItem


class JobSource(ABC):
    """Provides the batch of work items for one cycle"""

    @abstractmethod
    async def fetch_batch(self, timeout: float) -> List[WorkItem]:
        """
        Fetch the current batch.

        Args:
            timeout: Seconds left in the cycle's time budget

        Returns:
            Possibly-empty list of work items

        Raises:
            JobSourceError on any failure, so that errors stay
            distinguishable from an empty batch
        """
        pass


class ItemProcessor(ABC):
    """
    Processes a single work item.

    Implementations must be safe to call concurrently, must observe the
    cancel signal, and should capture their own errors into a failed
    ItemResult rather than raising.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def process(self, item: WorkItem, cancel: CancelSignal) -> ItemResult:
        pass

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


class ResultSink(ABC):
    """Delivers one result downstream"""

    @abstractmethod
    async def forward(self, result: ItemResult) -> bool:
        """
        Forward a result.

        Returns:
            True if delivered, False if the sink chose not to deliver it

        Raises:
            ResultSinkError if delivery failed
        """
        pass
