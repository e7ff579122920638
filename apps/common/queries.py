from __future__ import annotations

from typing import Iterator

from django.db.models import Model, QuerySet


def stream_in_chunks(queryset: QuerySet, chunk_size: int = 500) -> Iterator[Model]:
    """
    Yield rows of `queryset` in primary-key order, `chunk_size` rows per query.

    Keyset pagination instead of an open server-side cursor, so callers may
    update the rows they are iterating over (the sweep marks rows submitted and
    they drop out of the filter) without disturbing the scan.
    """
    last_pk = None
    base = queryset.order_by("pk")
    while True:
        page = base if last_pk is None else base.filter(pk__gt=last_pk)
        rows = list(page[:chunk_size])
        if not rows:
            return
        yield from rows
        last_pk = rows[-1].pk
        if len(rows) < chunk_size:
            return
