"""
Batch export for tgingest.

Writes a message batch as JSON, CSV, Parquet or a Markdown digest.
"""

import json
import logging
from pathlib import Path
from typing import List

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from .cache import sanitize_channel_name
from .models import Message

logger = logging.getLogger(__name__)


EXPORT_FORMATS = ("json", "csv", "parquet", "markdown")

_EXTENSIONS = {"json": "json", "csv": "csv", "parquet": "parquet", "markdown": "md"}


def messages_to_dataframe(messages: List[Message]) -> pd.DataFrame:
    """One row per message, batch order preserved."""
    df = pd.DataFrame(
        [
            {
                "position": i,
                "date": m.date,
                "text": m.text,
                "images": list(m.images),
            }
            for i, m in enumerate(messages)
        ],
        columns=["position", "date", "text", "images"]
    )
    df["date"] = pd.to_datetime(df["date"], utc=True)
    return df


def render_markdown(channel: str, messages: List[Message]) -> str:
    """Human-readable digest of a batch, newest first."""
    name = channel.strip().lstrip("@")
    lines = [
        f"# Messages from @{name}",
        "",
        f"Showing {len(messages)} messages (newest first)",
        "",
    ]

    for i, message in enumerate(messages, 1):
        lines.append("---")
        lines.append("")
        header = f"## Message {i}"
        if message.date:
            header += f" ({message.date.strftime('%Y-%m-%d %H:%M UTC')})"
        lines.append(header)
        lines.append("")
        lines.append(message.text)
        for url in message.images:
            lines.append("")
            lines.append(f"![image]({url})")
        lines.append("")

    return "\n".join(lines)


def default_export_path(data_dir: Path, channel: str, fmt: str) -> Path:
    name = sanitize_channel_name(channel)
    return Path(data_dir) / "exports" / f"{name}_export.{_EXTENSIONS[fmt]}"


def export_messages(
    channel: str,
    messages: List[Message],
    output_path: Path,
    fmt: str = "json"
) -> Path:
    """
    Write a batch to ``output_path`` in the requested format.

    Raises:
        ValueError: unknown format
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format {fmt!r} (expected one of: {', '.join(EXPORT_FORMATS)})")

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if fmt == "markdown":
        output_path.write_text(render_markdown(channel, messages), encoding="utf-8")

    elif fmt == "json":
        records = [m.to_dict() for m in messages]
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(records, f, ensure_ascii=False, indent=2)

    elif fmt == "csv":
        df = messages_to_dataframe(messages)
        df["images"] = df["images"].apply(lambda urls: " ".join(urls))
        df.to_csv(output_path, index=False, encoding="utf-8")

    else:
        df = messages_to_dataframe(messages)
        table = pa.Table.from_pandas(df, preserve_index=False)
        pq.write_table(table, output_path, compression="snappy")

    logger.info(f"Exported {len(messages)} messages to {output_path}")
    return output_path
