"""
Plain-text status panel served on ``GET /``.
"""

from __future__ import annotations

from typing import Any


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    units = (("d", 86400), ("h", 3600), ("m", 60))
    parts = []
    for suffix, size in units:
        amount, seconds = divmod(seconds, size)
        if amount:
            parts.append(f"{amount}{suffix}")
    return " ".join(parts) or f"{seconds}s"


class StatusRenderer:
    title = "Ancient Store Status"

    def rows(self, stats: dict[str, Any], uptime: float) -> list[tuple[str, str]]:
        return [
            ("Namespace", stats["namespace"]),
            ("State", stats["state"]),
            ("Frozen", f"{stats['frozen']:,}"),
            ("Pending", f"{stats['pending_blocks']:,} blocks / {stats['pending_hashes']:,} hashes"),
            ("Encoding", stats["encoding"]),
            ("Mode", "read-only" if stats["read_only"] else "read-write"),
            ("Uploads", f"{stats['uploads']:,} ({stats['bytes_written']:,} bytes)"),
            ("Downloads", f"{stats['downloads']:,} ({stats['bytes_read']:,} bytes)"),
            ("RPC Uptime", format_duration(uptime)),
        ]

    def render(self, stats: dict[str, Any], uptime: float) -> bytes:
        rows = self.rows(stats, uptime)
        label_width = max(len(label) for label, _ in rows)
        lines = [f"{label.ljust(label_width)} : {value}" for label, value in rows]
        width = max(max(len(line) for line in lines), len(self.title) + 2)
        border = "+" + "-" * (width + 2) + "+"
        body = [f"| {line.ljust(width)} |" for line in lines]
        panel = [border, f"| {(' ' + self.title + ' ').center(width)} |", border, *body, border]
        return "\n".join(panel).encode("utf-8")
