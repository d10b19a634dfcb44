"""
steptrader Core: End-of-Day Summary

Aggregates one day of the trade audit trail into a per-symbol CSV:

    symbol, buy_qty, buy_avg, sell_qty, sell_avg, realized_pnl,
    gross_buy_value, gross_sell_value

followed by a TOTAL row. Realized P&L pairs the matched quantity
(min of bought and sold) at the day's average sell minus average buy.

Output: <log_dir>/eod/<YYYY-MM-DD>.csv (or the configured directory).
"""

import csv
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from core.audit_log import AuditLogger

logger = logging.getLogger(__name__)

CSV_HEADERS = [
    "symbol", "buy_qty", "buy_avg", "sell_qty", "sell_avg",
    "realized_pnl", "gross_buy_value", "gross_sell_value",
]


@dataclass
class SymbolSummary:
    """Day totals for one symbol."""
    symbol: str
    buy_qty: int = 0
    buy_value: float = 0.0
    sell_qty: int = 0
    sell_value: float = 0.0

    @property
    def buy_avg(self) -> float:
        return self.buy_value / self.buy_qty if self.buy_qty > 0 else 0.0

    @property
    def sell_avg(self) -> float:
        return self.sell_value / self.sell_qty if self.sell_qty > 0 else 0.0

    @property
    def realized_pnl(self) -> float:
        matched = min(self.buy_qty, self.sell_qty)
        return matched * (self.sell_avg - self.buy_avg)


def parse_close_time(value: str) -> time:
    """'HH:MM' -> time"""
    return datetime.strptime(value, "%H:%M").time()


def aggregate_trades(records: Iterable[Dict]) -> Dict[str, SymbolSummary]:
    """Fold trade records into per-symbol totals; malformed rows are skipped."""
    rows: Dict[str, SymbolSummary] = {}
    for rec in records:
        try:
            symbol = rec["symbol"]
            side = rec["side"]
            qty = int(rec["qty"])
            price = float(rec["price"])
        except (KeyError, TypeError, ValueError):
            logger.debug(f"Skipping malformed trade record: {rec!r}")
            continue

        row = rows.setdefault(symbol, SymbolSummary(symbol=symbol))
        if side == "BUY":
            row.buy_qty += qty
            row.buy_value += qty * price
        elif side == "SELL":
            row.sell_qty += qty
            row.sell_value += qty * price
    return rows


class EodSummarizer:
    """
    Writes the end-of-day CSV from the audit trail.

    Day boundaries and the market-close cutoff use the audit logger's
    time zone.
    """

    def __init__(self, audit: AuditLogger, close_time: time = time(15, 40),
                 output_dir: Optional[str] = None):
        self.audit = audit
        self.close_time = close_time
        self.output_dir = Path(output_dir) if output_dir else audit.log_dir / "eod"

    def csv_path(self, day: date) -> Path:
        return self.output_dir / f"{day.isoformat()}.csv"

    def summarize_day(self, day: date) -> Optional[Path]:
        """
        Write the CSV for `day`.

        Returns:
            Path of the written file, or None when the day has no trades
        """
        rows = aggregate_trades(self.audit.read_day(day))
        if not rows:
            logger.info(f"No trades on {day.isoformat()} - skipping EOD summary")
            return None

        out_path = self.csv_path(day)
        self._write_csv(out_path, rows)
        logger.info(f"EOD summary for {day.isoformat()} written to {out_path} ({len(rows)} symbols)")
        return out_path

    def summarize_today(self) -> Optional[Path]:
        return self.summarize_day(self.audit.now().date())

    def should_run_now(self, now: Optional[datetime] = None) -> Tuple[bool, Path]:
        """True once past the close cutoff while today's CSV does not exist yet."""
        now = now or self.audit.now()
        out_path = self.csv_path(now.date())
        due = now.time() > self.close_time and not out_path.exists()
        return due, out_path

    def _write_csv(self, out_path: Path, rows: Dict[str, SymbolSummary]) -> None:
        out_path.parent.mkdir(parents=True, exist_ok=True)

        total_buy = total_sell = total_pnl = 0.0
        lines: List[List[str]] = []
        for symbol in sorted(rows):
            row = rows[symbol]
            lines.append([
                row.symbol,
                str(row.buy_qty),
                f"{row.buy_avg:.4f}",
                str(row.sell_qty),
                f"{row.sell_avg:.4f}",
                f"{row.realized_pnl:.2f}",
                f"{row.buy_value:.2f}",
                f"{row.sell_value:.2f}",
            ])
            total_buy += row.buy_value
            total_sell += row.sell_value
            total_pnl += row.realized_pnl

        with open(out_path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADERS)
            writer.writerows(lines)
            writer.writerow([
                "TOTAL", "", "", "", "",
                f"{total_pnl:.2f}", f"{total_buy:.2f}", f"{total_sell:.2f}",
            ])
