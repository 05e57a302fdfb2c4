"""
Activity Log

The runner's log surface: every pipeline step records what it did here.

Design:
- Entries kept in memory, in order (append-only)
- Each entry is timestamped and categorized: info, success, warning, error
- Extra keyword fields are kept with the entry (filename, export, ...)
- Optional TSV mirror on disk (human-readable, grep-able), rotated by size
- Clearing drops every entry, then records the clear itself

Philosophy:
The runner is a single interactive pipeline. It logs its own events and
the caller decides how to render them. No central logging system.
"""

import csv
import json
from pathlib import Path
from datetime import datetime
from typing import Optional, List, Dict, Any, Union


LEVELS = ('info', 'success', 'warning', 'error')
MIRROR_FIELDS = ['timestamp', 'level', 'message', 'fields']


class ActivityLog:
    """
    Append-only activity log for the component runner.

    Entries live in memory. When a log file is given they are also
    appended to it in TSV format.
    """

    def __init__(
        self,
        log_file: Optional[Path | str] = None,
        max_log_size: Optional[int] = None,
    ):
        """
        Initialize the activity log.

        Args:
            log_file: Optional TSV file that mirrors every entry
            max_log_size: Maximum mirror size in bytes before rotation
                         (default: 10MB)
        """
        self._entries: List[Dict[str, Any]] = []
        self.max_log_size = max_log_size or (10 * 1024 * 1024)  # 10MB default

        self.log_file = Path(log_file) if log_file else None
        if self.log_file is not None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

    def log(
        self,
        level: str,
        message: str,
        **kwargs,
    ) -> Dict[str, Any]:
        """
        Log an entry.

        Args:
            level: Log level (info, success, warning, error)
            message: Log message
            **kwargs: Additional fields to record (filename, export, ...)

        Returns:
            The recorded entry
        """
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level}")

        entry = {
            'timestamp': datetime.now().isoformat(),
            'level': level,
            'message': message,
            **kwargs,
        }

        # Remove None values (don't log empty fields)
        entry = {k: v for k, v in entry.items() if v is not None}

        self._entries.append(entry)

        if self.log_file is not None:
            self._write(entry)

        return entry

    def info(self, message: str, **kwargs) -> Dict[str, Any]:
        """Log info entry"""
        return self.log('info', message, **kwargs)

    def success(self, message: str, **kwargs) -> Dict[str, Any]:
        """Log success entry"""
        return self.log('success', message, **kwargs)

    def warning(self, message: str, **kwargs) -> Dict[str, Any]:
        """Log warning entry"""
        return self.log('warning', message, **kwargs)

    def error(self, message: str, **kwargs) -> Dict[str, Any]:
        """Log error entry"""
        return self.log('error', message, **kwargs)

    def clear(self) -> None:
        """
        Clear the log.

        The in-memory entries are dropped and exactly one new entry
        recording the clear is added. The TSV mirror keeps its history.
        """
        self._entries = []
        self.info('Output cleared')

    def get_entries(
        self,
        level: Optional[Union[str, List[str]]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        **filters,
    ) -> List[Dict[str, Any]]:
        """
        Get log entries.

        Args:
            level: Filter by level (string or list of strings)
            limit: Maximum number of entries to return
            offset: Number of entries to skip
            **filters: Additional filters (e.g., filename='add.wasm')

        Returns:
            List of log entries (copies)
        """
        entries = [dict(e) for e in self._entries]

        if level is not None:
            if isinstance(level, str):
                level = [level]
            entries = [e for e in entries if e.get('level') in level]

        for key, value in filters.items():
            entries = [e for e in entries if e.get(key) == value]

        if offset > 0:
            entries = entries[offset:]

        if limit is not None:
            entries = entries[:limit]

        return entries

    def messages(self) -> List[str]:
        """Messages of all entries, oldest first"""
        return [e['message'] for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def format_entry(entry: Dict[str, Any]) -> str:
        """Render an entry as '[HH:MM:SS] message'"""
        timestamp = datetime.fromisoformat(entry['timestamp'])
        return f"[{timestamp.strftime('%H:%M:%S')}] {entry['message']}"

    def _write(self, entry: Dict[str, Any]) -> None:
        """Append an entry to the TSV mirror"""
        self._rotate_if_needed()

        # Extra fields vary per entry, so they share one JSON column
        extra = {k: v for k, v in entry.items() if k not in MIRROR_FIELDS}
        row = {k: entry.get(k, '') for k in MIRROR_FIELDS[:-1]}
        row['fields'] = json.dumps(extra, default=str) if extra else ''

        is_new_file = not self.log_file.exists()

        with open(self.log_file, 'a', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=MIRROR_FIELDS, delimiter='\t')

            if is_new_file:
                writer.writeheader()

            writer.writerow(row)

    def read_mirror(self) -> List[Dict[str, Any]]:
        """Read back every entry from the TSV mirror, rotated files included"""
        if self.log_file is None:
            return []

        files = sorted(self.log_file.parent.glob(f'{self.log_file.stem}-*.tsv'))
        if self.log_file.exists():
            files.append(self.log_file)

        entries = []
        for path in files:
            with open(path, 'r', newline='') as f:
                reader = csv.DictReader(f, delimiter='\t')
                for row in reader:
                    fields = row.pop('fields', '')
                    if fields:
                        row.update(json.loads(fields))
                    entries.append(row)
        return entries

    def _rotate_if_needed(self) -> None:
        """Rotate the TSV mirror if it exceeds max size"""
        if not self.log_file.exists():
            return

        if self.log_file.stat().st_size < self.max_log_size:
            return

        # Rotate: rename current log to <stem>-TIMESTAMP.tsv
        timestamp = datetime.now().strftime('%Y%m%d-%H%M%S')
        rotated_name = self.log_file.with_name(f'{self.log_file.stem}-{timestamp}.tsv')
        self.log_file.rename(rotated_name)
