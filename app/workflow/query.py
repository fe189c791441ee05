"""
Query / filter layer for the review list.

Default mode pushes status, department, date-range and the paid/rejected auto-hide
down to the store as one filter predicate. When search text is present the auto-hide
is suspended and the fetched claims are matched client-side against the search term.
"""
from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

from app.schemas.api import ReimbursementFilters
from app.schemas.reimbursement import Receipt, Reimbursement, ReimbursementView
from app.services.store import Collections, Filter, Gte, Ne, RecordStore, all_of, any_of
from app.workflow.errors import UnreadableRecord
from app.workflow.journal import visible_to
from app.workflow.loader import ReimbursementLoader

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Filter construction
# ---------------------------------------------------------------------------

def _months_back(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def date_cutoff(date_range: str, now: datetime) -> Optional[datetime]:
    """Oldest ``created`` instant still inside *date_range*; ``None`` for ``all``."""
    if date_range == "week":
        return now - timedelta(days=7)
    if date_range == "month":
        return _months_back(now, 1)
    if date_range == "year":
        return _months_back(now, 12)
    return None


def build_filter(filters: ReimbursementFilters, now: datetime) -> Optional[Filter]:
    auto_hide = not filters.is_searching
    cutoff = date_cutoff(filters.date_range, now)
    return all_of(
        any_of("status", [s.value for s in filters.status]),
        Ne("status", "paid") if filters.hide_paid and auto_hide else None,
        Ne("status", "rejected") if filters.hide_rejected and auto_hide else None,
        any_of("department", [d.value for d in filters.department]),
        Gte("created", cutoff) if cutoff is not None else None,
    )


def build_sort(filters: ReimbursementFilters) -> str:
    prefix = "-" if filters.sort_order == "desc" else ""
    return f"{prefix}{filters.sort_by}"


# ---------------------------------------------------------------------------
# Client-side search
# ---------------------------------------------------------------------------

def date_renderings(value: str) -> list[str]:
    """The ways a purchase date might be typed into the search box."""
    renderings = [value]
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(value[:10]), datetime.min.time())
        except ValueError:
            return renderings
    d = parsed.date()
    renderings.extend([
        d.isoformat(),                              # 2024-01-05
        f"{d.month}/{d.day}/{d.year}",              # 1/5/2024
        d.strftime("%m/%d/%Y"),                     # 01/05/2024
        f"{d.strftime('%a %b %d')} {d.year}",       # Fri Jan 05 2024
        f"{d.strftime('%B')} {d.day}, {d.year}",    # January 5, 2024
    ])
    return renderings


def matches_search(
    reimbursement: Reimbursement,
    term: str,
    submitter_name: str = "",
    receipts: Iterable[Receipt] = (),
) -> bool:
    """True when any searchable field contains *term* (case-insensitive)."""
    needle = term.strip().lower()
    if not needle:
        return True
    haystack = [
        reimbursement.title,
        submitter_name,
        *date_renderings(reimbursement.date_of_purchase),
        reimbursement.department.value,
        reimbursement.status.value.replace("_", " "),
        reimbursement.additional_info,
    ]
    for receipt in receipts:
        haystack.extend([receipt.location_name, receipt.location_address])
    return any(needle in (field or "").lower() for field in haystack)


class ReimbursementQuery:
    def __init__(self, store: RecordStore):
        self.store = store
        self.loader = ReimbursementLoader(store)

    def fetch(
        self,
        filters: ReimbursementFilters,
        now: Optional[datetime] = None,
        viewer_id: Optional[str] = None,
    ) -> list[ReimbursementView]:
        """Claims matching *filters*, each as *viewer_id* may see it.

        Rows that no longer fit the entity model are skipped with a warning.
        """
        now = now or datetime.now(timezone.utc)
        records = self.store.get_all(
            Collections.REIMBURSEMENTS, build_filter(filters, now), build_sort(filters)
        )
        receipt_ids = [rid for r in records for rid in (r.get("receipts") or [])]
        receipts = {r.id: r for r in self.loader.receipts(dict.fromkeys(receipt_ids))}
        user_ids = [r["submitted_by"] for r in records]
        user_ids += [a for receipt in receipts.values() for a in receipt.audited_by]
        names = self.loader.user_names(user_ids)
        views = []
        for record in records:
            try:
                view = self.loader.view(record, receipts, names)
            except UnreadableRecord as exc:
                logger.warning("Skipping reimbursement: %s", exc)
                continue
            views.append(visible_to(view, viewer_id))

        if filters.is_searching:
            views = [
                v for v in views
                if matches_search(v.reimbursement, filters.search, v.submitter_name, v.receipts)
            ]
        logger.info("Listed %d reimbursements (search=%r)", len(views), filters.search)
        return views
