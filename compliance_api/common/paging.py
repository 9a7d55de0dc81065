# compliance_api/common/paging.py
from flask import request
from sqlalchemy import asc, desc

DEFAULT_PAGE = 1
DEFAULT_SIZE = 20
MAX_SIZE = 100


def page_limit():
    """?page= (1-based) and ?size= (1..MAX_SIZE); junk falls back to defaults."""
    page = request.args.get("page", DEFAULT_PAGE, type=int)
    size = request.args.get("size", DEFAULT_SIZE, type=int)
    return max(page, 1), max(1, min(size, MAX_SIZE))


def sort_params(allowed: dict[str, object]):
    """
    ?sort=name,-created_at  ->  [(Model.name, True), (Model.created_at, False)]
    Keys missing from ``allowed`` are ignored.
    """
    out = []
    for part in (request.args.get("sort") or "").split(","):
        part = part.strip()
        if not part:
            continue
        ascending = not part.startswith("-")
        col = allowed.get(part.lstrip("-"))
        if col is not None:
            out.append((col, ascending))
    return out


def text_q():
    return (request.args.get("q") or "").strip() or None


def paginate(qry, default_sort, allowed: dict[str, object]):
    """Apply ?sort and ?page/?size to a query; returns (items, meta)."""
    sorts = sort_params(allowed)
    if sorts:
        qry = qry.order_by(*[asc(col) if ascending else desc(col) for col, ascending in sorts])
    else:
        qry = qry.order_by(default_sort)

    page, size = page_limit()
    total = qry.count()
    items = qry.offset((page - 1) * size).limit(size).all()
    return items, {"page": page, "size": size, "total": total}
