"""
Plain-text rendering of crawl reports.
"""

import math

URL_WIDTH = 100
TYPE_WIDTH = 30
STATUS_WIDTH = 70
SEPARATOR = " "

_SIZE_UNITS = ('kB', 'MB', 'GB', 'TB', 'PB', 'EB', 'ZB', 'YB')


def cell(value: str, width: int) -> str:
    """Pad to ``width``; longer values keep their tail behind '...'."""
    if len(value) == width:
        return value
    if len(value) > width:
        return "..." + value[len(value) - (width - 3):]
    return value + " " * (width - len(value))


def format_size(size: float) -> str:
    """SI byte size rounded down to two decimals, e.g. '1.53 MB'."""
    if size < 1e3:
        return f"{int(size)} B"
    for exponent, unit in enumerate(_SIZE_UNITS, start=1):
        if size < 10 ** (3 * (exponent + 1)) or unit == _SIZE_UNITS[-1]:
            value = math.floor(size / 10 ** (3 * exponent - 2)) / 100
            return f"{value:g} {unit}"


def format_duration(seconds: float) -> str:
    seconds = int(max(seconds, 0))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_report(report) -> str:
    """Render a CrawlReport as a fixed-width table followed by totals."""
    rule = "-" * 50
    lines = [
        cell("URL", URL_WIDTH) + SEPARATOR + cell("Type", TYPE_WIDTH) + SEPARATOR + cell("Status", STATUS_WIDTH),
        rule,
    ]
    for entry in report.entries:
        lines.append(
            cell(entry.url, URL_WIDTH) + SEPARATOR +
            cell(entry.mime, TYPE_WIDTH) + SEPARATOR +
            cell(entry.status, STATUS_WIDTH)
        )
    lines.append(rule)
    lines.extend([
        f"Active tasks:    {report.active_tasks}",
        f"All links:       {report.total}",
        f"External links:  {report.external}",
        f"Local links:     {report.local}",
        f"Data size:       {format_size(report.total_bytes)}",
        f"Elapsed:         {format_duration(report.elapsed)}",
    ])
    return "\n".join(lines)
