class ListResponseMixin:
    """Adds ``list_response`` to services that expose a ``list`` method.

    ``limit`` and ``offset`` are the last two positional arguments of
    ``list`` (or keyword arguments of the same name).
    """

    def list_response(self, db, *args, **kwargs):
        items = self.list(db, *args, **kwargs)
        limit = kwargs.get("limit", args[-2] if len(args) >= 2 else None)
        offset = kwargs.get("offset", args[-1] if len(args) >= 1 else None)
        return {"items": items, "count": len(items), "limit": limit, "offset": offset}
