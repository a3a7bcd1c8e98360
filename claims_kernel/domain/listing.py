"""
Listing -- enumerated sort keys and pagination for application lists.

Only the keys declared in ``ApplicationSortKey`` can be sorted on; each
maps to a typed key function.  The application id breaks ties so a
given sort is deterministic across pages.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Sequence

from claims_kernel.domain.claims import Application
from claims_kernel.domain.requests import Page, SortOrder, coerce_enum
from claims_kernel.exceptions import ValidationError

MAX_PAGE_SIZE = 100


class ApplicationSortKey(str, Enum):
    SUBMITTED_AT = "submitted_at"
    UPDATED_AT = "updated_at"
    REFERENCE_NUMBER = "reference_number"
    EMPLOYEE_NAME = "employee_name"
    STATUS = "status"
    TOTAL_AMOUNT_CLAIMED = "total_amount_claimed"
    TOTAL_AMOUNT_APPROVED = "total_amount_approved"


APPLICATION_SORT_KEYS: dict[ApplicationSortKey, Callable[[Application], Any]] = {
    ApplicationSortKey.SUBMITTED_AT: lambda a: a.submitted_at,
    ApplicationSortKey.UPDATED_AT: lambda a: a.updated_at,
    ApplicationSortKey.REFERENCE_NUMBER: lambda a: a.reference_number,
    ApplicationSortKey.EMPLOYEE_NAME: lambda a: a.employee_name.casefold(),
    ApplicationSortKey.STATUS: lambda a: a.status.value,
    ApplicationSortKey.TOTAL_AMOUNT_CLAIMED: lambda a: a.total_amount_claimed,
    ApplicationSortKey.TOTAL_AMOUNT_APPROVED: lambda a: a.total_amount_approved,
}


def parse_sort(
    sort_key: ApplicationSortKey | str,
    sort_order: SortOrder | str,
) -> tuple[ApplicationSortKey, SortOrder]:
    return (
        coerce_enum(ApplicationSortKey, sort_key, "sort_key"),
        coerce_enum(SortOrder, sort_order, "sort_order"),
    )


def sort_applications(
    applications: Sequence[Application],
    sort_key: ApplicationSortKey,
    sort_order: SortOrder,
) -> list[Application]:
    key_fn = APPLICATION_SORT_KEYS[sort_key]
    return sorted(
        applications,
        key=lambda a: (key_fn(a), str(a.id)),
        reverse=sort_order == SortOrder.DESC,
    )


def validate_paging(page: int, page_size: int) -> None:
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValidationError("page must be a positive integer", field="page", value=page)
    if (
        isinstance(page_size, bool)
        or not isinstance(page_size, int)
        or not 1 <= page_size <= MAX_PAGE_SIZE
    ):
        raise ValidationError(
            f"page_size must be between 1 and {MAX_PAGE_SIZE}",
            field="page_size",
            value=page_size,
        )


def paginate(items: Sequence[Application], page: int, page_size: int) -> Page[Application]:
    validate_paging(page, page_size)
    start = (page - 1) * page_size
    return Page(
        items=tuple(items[start:start + page_size]),
        page=page,
        page_size=page_size,
        total=len(items),
    )
