"""
Append-only sale log for an auction.

Uses JSONL (JSON Lines) format where each line is one resolved player, sold or
unsold. The log is the sink for final outcomes and the source for resuming an
auction after a crash: replaying it closes the players again and debits each
sale exactly once.
"""

import csv
import json
import logging
from pathlib import Path
from typing import List, Optional

from .auction_event import ItemResolved

logger = logging.getLogger(__name__)


class SaleEventStore:
    """Append-only JSONL log of ItemResolved events."""

    def __init__(self, filepath: Path):
        """
        Initialize event store.

        Args:
            filepath: Path to JSONL file for event storage
        """
        self.filepath = Path(filepath)
        self.filepath.parent.mkdir(parents=True, exist_ok=True)

    def append_event(self, event: ItemResolved) -> None:
        """Append a single outcome as one line of JSON."""
        with open(self.filepath, 'a', encoding='utf-8') as f:
            f.write(event.to_record_json() + '\n')
        logger.debug(f"Appended outcome: {event.item_id} {event.outcome}")

    def load_all_events(self) -> List[ItemResolved]:
        """
        Load complete outcome history from file.

        Returns:
            List of ItemResolved in the order they were written

        Returns empty list if file doesn't exist. Unparseable lines are
        logged and skipped.
        """
        if not self.filepath.exists():
            logger.debug(f"Sale log does not exist: {self.filepath}")
            return []

        events = []
        with open(self.filepath, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue

                try:
                    events.append(ItemResolved.from_record_json(line))
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.error(
                        f"Failed to parse outcome at line {line_num}: {e}\n"
                        f"Line content: {line}"
                    )

        logger.info(f"Loaded {len(events)} outcomes from {self.filepath}")
        return events

    def replay(self, state_machine) -> int:
        """
        Restore every logged outcome into an Idle state machine.

        Args:
            state_machine: AuctionStateMachine that has its players and teams

        Returns:
            Number of outcomes applied

        Outcomes for players no longer in the queue are skipped with a warning.
        Budgets are debited through the idempotent commit, so duplicated lines
        in the log are harmless.

        Raises:
            RegistrationError: If a logged sale no longer fits the winner's purse
        """
        events = self.load_all_events()
        applied = 0
        for event in events:
            try:
                state_machine.restore_resolution(event)
            except KeyError as e:
                logger.warning(f"Skipping outcome for unknown player or team: {e}")
                continue
            applied += 1

        logger.info(
            f"Replayed {applied}/{len(events)} outcomes into auction {state_machine.auction_id}"
        )
        return applied

    def get_event_count(self) -> int:
        if not self.filepath.exists():
            return 0

        with open(self.filepath, 'r', encoding='utf-8') as f:
            return sum(1 for line in f if line.strip())

    def get_last_event(self) -> Optional[ItemResolved]:
        """Most recent outcome, or None if the log is empty."""
        if not self.filepath.exists():
            return None

        with open(self.filepath, 'r', encoding='utf-8') as f:
            lines = f.readlines()

        for line in reversed(lines):
            line = line.strip()
            if line:
                try:
                    return ItemResolved.from_record_json(line)
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.error(f"Failed to parse last outcome: {e}")
                    continue

        return None

    def export_to_csv(self, output_path: Path) -> None:
        """Export the sale log to CSV for the results sheet."""
        events = self.load_all_events()
        if not events:
            logger.warning("No outcomes to export")
            return

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(['item_id', 'outcome', 'winner', 'price', 'timestamp'])
            for event in events:
                writer.writerow([
                    event.item_id,
                    event.outcome,
                    event.winner or '',
                    event.price if event.price is not None else '',
                    event.timestamp.isoformat()
                ])

        logger.info(f"Exported {len(events)} outcomes to {output_path}")


def create_session_filepath(base_dir: Path, auction_id: str) -> Path:
    """Sale log path for an auction. One file per auction so a restart resumes it."""
    return Path(base_dir) / f"auction_{auction_id}.jsonl"
