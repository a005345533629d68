# geomayora/services/grouping.py
import math
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from geomayora.schemas import LandRecord, Village

ALL_VILLAGES = "SEMUA"
ALL_STATUSES = "ALL"

NO_GU_LABEL = "Tanpa No. GU"
NO_DOCUMENT_LABEL = "Tanpa Dokumen"

SORT_KEYS = ("gu_asc", "gu_desc", "newest", "oldest", "area_high", "area_low")
DEFAULT_SORT = "gu_asc"

_DIGITS = re.compile(r"(\d+)")


@dataclass
class RecordFilters:
    village: Optional[str] = ALL_VILLAGES
    search: Optional[str] = ""
    status: Optional[str] = ALL_STATUSES


@dataclass
class RecordGroup:
    key: Tuple[str, str]
    members: List[LandRecord] = field(default_factory=list)

    @property
    def no_gu(self) -> str:
        return self.key[0]

    @property
    def document_number(self) -> str:
        return self.key[1]

    @property
    def unified_area(self) -> float:
        # owners of one document share the area; take the first, never sum
        return self.members[0].area if self.members else 0.0

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def latest_created_at(self) -> int:
        return max((m.created_at for m in self.members), default=0)


@dataclass
class GroupPage:
    groups: List[RecordGroup]
    page: int
    total_pages: int
    total_groups: int


def _is_all(value: Optional[str], all_label: str) -> bool:
    return not value or value in (ALL_VILLAGES, ALL_STATUSES, all_label)


def _matches_search(record: LandRecord, term: str) -> bool:
    haystack = (
        record.owner_name, record.no_gu, record.document_number, record.village,
        record.block, record.plot_number, record.remarks,
    )
    return any(term in (v or "").lower() for v in haystack)


def filter_records(records: Iterable[LandRecord], filters: RecordFilters) -> List[LandRecord]:
    """Village tab, then free-text search, then status."""
    data = list(records)

    if not _is_all(filters.village, ALL_VILLAGES):
        data = [r for r in data if r.village == filters.village]

    if filters.search:
        term = filters.search.lower()
        data = [r for r in data if _matches_search(r, term)]

    if not _is_all(filters.status, ALL_STATUSES):
        data = [r for r in data if r.status.value == filters.status or r.status.name == filters.status]

    return data


def group_key(record: LandRecord) -> Tuple[str, str]:
    gu = record.no_gu.strip() if record.no_gu else ""
    doc = record.document_number.strip() if record.document_number else ""
    return (gu or NO_GU_LABEL, doc or NO_DOCUMENT_LABEL)


def natural_key(value: Optional[str]) -> tuple:
    """
    Sort key that orders digit runs numerically and text case-insensitively:
    "N2" < "N10", "n1" == "N1".
    """
    parts = []
    for chunk in _DIGITS.split(value or ""):
        if not chunk:
            continue
        if chunk.isdigit():
            parts.append((0, int(chunk), ""))
        else:
            parts.append((1, 0, chunk.casefold()))
    return tuple(parts)


def group_records(records: Iterable[LandRecord]) -> List[RecordGroup]:
    groups: Dict[Tuple[str, str], RecordGroup] = {}
    for r in records:
        key = group_key(r)
        if key not in groups:
            groups[key] = RecordGroup(key=key)
        groups[key].members.append(r)
    return list(groups.values())


def sort_groups(groups: List[RecordGroup], sort_key: Optional[str] = DEFAULT_SORT) -> List[RecordGroup]:
    if sort_key == "newest":
        return sorted(groups, key=lambda g: g.latest_created_at, reverse=True)
    if sort_key == "oldest":
        return sorted(groups, key=lambda g: g.latest_created_at)
    if sort_key == "area_high":
        return sorted(groups, key=lambda g: g.unified_area, reverse=True)
    if sort_key == "area_low":
        return sorted(groups, key=lambda g: g.unified_area)
    if sort_key == "gu_desc":
        return sorted(groups, key=lambda g: natural_key(g.members[0].no_gu), reverse=True)
    return sorted(groups, key=lambda g: natural_key(g.members[0].no_gu))


def compute_groups(
    records: Iterable[LandRecord],
    filters: Optional[RecordFilters] = None,
    sort_key: Optional[str] = DEFAULT_SORT,
) -> List[RecordGroup]:
    filtered = filter_records(records, filters or RecordFilters())
    return sort_groups(group_records(filtered), sort_key)


def paginate(groups: Sequence[RecordGroup], page: int = 1, page_size: int = 10) -> GroupPage:
    """Pages hold whole groups, so the number of rows per page varies."""
    total = len(groups)
    total_pages = max(1, math.ceil(total / page_size)) if page_size > 0 else 1
    page = min(max(1, page), total_pages)
    start = (page - 1) * page_size
    return GroupPage(
        groups=list(groups[start:start + page_size]),
        page=page,
        total_pages=total_pages,
        total_groups=total,
    )


def village_counts(records: Iterable[LandRecord]) -> Dict[str, int]:
    records = list(records)
    counts = {ALL_VILLAGES: len(records)}
    for v in Village:
        counts[v.value] = 0
    for r in records:
        if r.village in counts and r.village != ALL_VILLAGES:
            counts[r.village] += 1
    return counts
