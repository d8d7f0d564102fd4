"""Base ingestor abstract class."""
from abc import ABC, abstractmethod
from pydantic import ValidationError
from common.errors import MalformedSnapshot
from common.logger import get_logger
from common.models import AssetSnapshot


class BaseIngestor(ABC):
    """Market data provider. Calls are blocking; run them via asyncio.to_thread."""

    SOURCE = "base"

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    def fetch_batch(self, page: int, per_page: int) -> list[AssetSnapshot]:
        """One page of the universe ordered by market cap."""
        pass

    @abstractmethod
    def fetch_one(self, asset_id: str) -> AssetSnapshot:
        pass

    def fetch_global(self) -> dict:
        """Market-wide figures (BTC dominance etc.). Empty when unsupported."""
        return {}

    def to_snapshot(self, record: dict) -> AssetSnapshot:
        if not record.get("id") or not record.get("symbol"):
            raise MalformedSnapshot(f"{self.SOURCE}: record without id/symbol: {record!r:.120}")
        rank = record.get("market_cap_rank")
        if not rank or rank < 1:
            record = {**record, "market_cap_rank": None}
        try:
            return AssetSnapshot(**record)
        except ValidationError as e:
            raise MalformedSnapshot(f"{self.SOURCE}: {record.get('id')}: {e.error_count()} invalid fields") from e

    def parse_many(self, records: list[dict]) -> list[AssetSnapshot]:
        """Parse a page, skipping malformed records."""
        snapshots = []
        for record in records:
            try:
                snapshots.append(self.to_snapshot(record))
            except MalformedSnapshot as e:
                self.logger.warning(f"Skipping record: {e}")
        return snapshots
