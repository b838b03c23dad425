from datetime import datetime, timezone
from typing import Iterable, Optional

from .endpoints import explorer_url
from .results import AttemptStatus, Event, EventKind, TransactionAttempt

LIFECYCLE_EVENTS = (
    EventKind.CREATE_TRANSACTION,
    EventKind.WS_SUBSCRIBE,
    EventKind.WS_CONFIRMATION,
    EventKind.RPC_SEND,
)


def format_timestamp(ts: Optional[float]) -> str:
    if ts is None:
        return "N/A"
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="milliseconds")


def format_ms(value: Optional[int]) -> str:
    return "N/A" if value is None else f"{value} ms"


def shorten_signature(signature: Optional[str]) -> str:
    if not signature:
        return "N/A"
    return f"{signature[:4]}...{signature[-4:]}"


def _table(headers: list[str], rows: list[list[str]]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]

    def line(cells):
        return "  ".join(cell.ljust(width) for cell, width in zip(cells, widths)).rstrip()

    out = [line(headers), line(["-" * w for w in widths])]
    out.extend(line(row) for row in rows)
    return "\n".join(out)


def render_timings(attempts: list[TransactionAttempt]) -> str:
    if not attempts:
        return "No transaction data to display."

    rows = []
    for attempt in attempts:
        sent = format_timestamp(attempt.sent_at)
        if attempt.first_sent_endpoint:
            sent += f" ({attempt.first_sent_endpoint})"
        confirmed = format_timestamp(attempt.first_confirmed_at)
        if attempt.first_confirmed_endpoint:
            confirmed += f" ({attempt.first_confirmed_endpoint})"
        block_time = "N/A" if attempt.block_time is None else format_timestamp(attempt.block_time)

        if attempt.status == AttemptStatus.FAILED:
            status = f"Error: {attempt.error}"
        else:
            status = attempt.status.value

        rows.append([
            str(attempt.index),
            shorten_signature(attempt.signature),
            format_timestamp(attempt.created_at),
            sent,
            confirmed,
            "N/A" if attempt.slot is None else str(attempt.slot),
            block_time,
            format_ms(attempt.confirmation_ms),
            status,
        ])

    return _table(
        ["#", "TxSig", "CreatedAt", "FirstSentAt", "FirstConfirmedAt", "Slot", "BlockTime", "Create->Confirm", "Status"],
        rows,
    )


def render_endpoint_results(attempt: TransactionAttempt) -> str:
    rows = []
    for name, result in attempt.rpc_results.items():
        rows.append([
            "RPC", name, result.status, format_ms(result.duration_ms),
            "" if result.signature_or_error is None else str(result.signature_or_error),
        ])
    for name, result in attempt.ws_results.items():
        detail = result.error or ("" if result.slot is None else f"slot {result.slot}")
        rows.append(["WS", name, result.status, format_ms(result.duration_ms), detail])
    if not rows:
        return "No endpoint results."
    return _table(["Kind", "Endpoint", "Status", "Duration", "Detail"], rows)


def render_event_summary(events: Iterable[Event]) -> str:
    rows = [
        [format_timestamp(e.timestamp), e.kind.value, e.url or "-"]
        for e in events
        if e.kind in LIFECYCLE_EVENTS
    ]
    if not rows:
        return "No transaction lifecycle events to display."
    return _table(["Timestamp", "Event", "Url"], rows)


def render_batch(attempts: list[TransactionAttempt], network: str = "devnet") -> str:
    sections = ["Transaction Timings", render_timings(attempts)]
    for attempt in attempts:
        sections.append("")
        header = f"Attempt {attempt.index}"
        if attempt.signature and attempt.status != AttemptStatus.FAILED:
            header += f"  {explorer_url(attempt.signature, network)}"
        sections.append(header)
        if attempt.detail_error:
            sections.append(f"Detail lookup: {attempt.detail_error}")
        sections.append(render_endpoint_results(attempt))
        sections.append("")
        sections.append(render_event_summary(attempt.events))
    return "\n".join(sections)


def format_event(event: Event) -> str:
    return f"[{format_timestamp(event.timestamp)}] {event.message}"
