"""
steptrader Core: Audit Logger

Append-only trail of executed trades and oracle decisions.

Output format: JSONL (one JSON object per line), one file per local calendar day,
in two partitions:
    <log_dir>/<YYYY-MM-DD>.jsonl            trade executions
    <log_dir>/decisions/<YYYY-MM-DD>.jsonl  decisions

Records are never rewritten. Day files past the retention window may be
gzipped; their content is unchanged.
"""

import gzip
import json
import logging
import math
import os
import shutil
import threading
from dataclasses import dataclass, asdict, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
TRADES = "trades"
DECISIONS = "decisions"


@dataclass
class TradeRecord:
    """Executed order as written to the trades partition."""
    symbol: str
    side: str
    qty: int
    price: float
    order_id: str
    reason: str
    confidence: float
    time: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DecisionRecord:
    """Oracle decision with the indicator snapshot it was made on."""
    symbol: str
    action: str
    confidence: float
    reason: str
    price: float
    indicators: Dict[str, float] = field(default_factory=dict)
    time: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


def _sanitize(value: Any) -> Any:
    """NaN/inf are not valid JSON; write them as null."""
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    if isinstance(value, dict):
        return {k: _sanitize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(v) for v in value]
    return value


class AuditLogger:
    """
    Daily-partitioned JSONL audit trail.

    Write failures are logged and swallowed: an audit problem must never
    undo or hide a confirmed broker fill.
    """

    def __init__(self, log_dir: Optional[str] = None, tz_name: Optional[str] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Root directory (default: $TRADER_LOG_DIR or logs/)
            tz_name: IANA time zone for day boundaries and timestamps
                     (default: system local time)
        """
        env_dir = os.getenv("TRADER_LOG_DIR")
        self.log_dir = Path(env_dir or log_dir or "logs")
        self.tz = ZoneInfo(tz_name) if tz_name else None
        self._lock = threading.Lock()

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized AuditLogger at {self.log_dir} (tz={tz_name or 'local'})")

    def now(self) -> datetime:
        if self.tz is not None:
            return datetime.now(self.tz)
        return datetime.now().astimezone()

    def day_path(self, day: date, partition: str = TRADES) -> Path:
        name = f"{day.isoformat()}.jsonl"
        if partition == DECISIONS:
            return self.log_dir / DECISIONS / name
        return self.log_dir / name

    def append_trade(self, record: TradeRecord) -> bool:
        return self._append(record, TRADES)

    def append_decision(self, record: DecisionRecord) -> bool:
        return self._append(record, DECISIONS)

    def _append(self, record: Any, partition: str) -> bool:
        try:
            with self._lock:
                now = self.now()
                record.time = now.strftime(TIME_FORMAT)
                entry = _sanitize(asdict(record))
                if not entry.get("extra"):
                    entry.pop("extra", None)

                path = self.day_path(now.date(), partition)
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry) + "\n")

            logger.debug(f"Audited {partition} record for {entry.get('symbol')}")
            return True
        except Exception as e:
            logger.error(f"Failed to write {partition} audit log: {e}")
            return False

    def read_day(self, day: date, partition: str = TRADES) -> List[Dict[str, Any]]:
        """Records for one day (plain or gzipped file), oldest first."""
        path = self.day_path(day, partition)
        gz_path = path.with_name(path.name + ".gz")

        if path.exists():
            opener = open(path, "r", encoding="utf-8")
        elif gz_path.exists():
            opener = gzip.open(gz_path, "rt", encoding="utf-8")
        else:
            return []

        records = []
        with opener as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed audit line in {path.name}")
        return records

    def get_recent(self, n: int = 10, partition: str = TRADES) -> List[Dict[str, Any]]:
        """The N most recent records of today's file (most recent first)."""
        records = self.read_day(self.now().date(), partition)
        return list(reversed(records[-n:]))

    def compress_older(self, retention_days: int) -> int:
        """
        Gzip day files last modified before the retention window.

        If a .gz already exists for a file, the plain file is removed.

        Returns:
            Number of files compressed or removed
        """
        if retention_days <= 0:
            return 0

        cutoff = (datetime.now() - timedelta(days=retention_days)).timestamp()
        handled = 0

        for path in self.log_dir.rglob("*.jsonl"):
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
                gz_path = path.with_name(path.name + ".gz")
                if gz_path.exists():
                    path.unlink()
                    handled += 1
                    continue
                tmp_path = gz_path.with_name(gz_path.name + ".tmp")
                with open(path, "rb") as src, gzip.open(tmp_path, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                os.replace(tmp_path, gz_path)
                path.unlink()
                handled += 1
            except OSError as e:
                logger.warning(f"Failed to compress {path}: {e}")

        if handled:
            logger.info(f"Compressed {handled} audit file(s) older than {retention_days} day(s)")
        return handled
