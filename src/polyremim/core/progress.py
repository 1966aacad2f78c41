"""Progress display for position scans."""

import sys
from collections.abc import Iterator

import progressbar


def progress_iterator(
    iterable: Iterator, total: int, desc: str = "", unit: str = "positions"
) -> Iterator:
    """Yield from `iterable` while drawing a progressbar2 bar on stdout.

    Scan outcomes arrive in request order, so the counter tracks how many
    positions of a scan have been tested. The bar is finished even when the
    consumer stops early or the scan raises.

    Args:
        iterable: Scan outcomes.
        total: Number of positions in the scan.
        desc: Label shown before the counter, e.g. "Refine".
        unit: Name of the counted items.

    Yields:
        Items from `iterable`, unchanged.
    """
    label = f"{desc} " if desc else ""
    widgets = [
        label,
        progressbar.Counter(format=f"%(value)d/{total} {unit}"),
        " ",
        progressbar.Bar(marker="=", left="[", right="]"),
        " ",
        progressbar.Timer(format="%(elapsed)s"),
    ]
    bar = progressbar.ProgressBar(max_value=total, widgets=widgets, fd=sys.stdout)
    bar.start()
    done = 0
    try:
        for item in iterable:
            yield item
            done += 1
            bar.update(done)
    finally:
        bar.finish()
