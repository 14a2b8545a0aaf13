"""AND-ed WHERE clauses with asyncpg ``$n`` placeholders."""

from typing import Any


class WhereBuilder:
    """Collects conditions and their positional arguments in placeholder order.

    Templates use ``{}`` where a bound value goes:

        w = WhereBuilder()
        w.where("session_id = {}", session_id)
        w.where_if(sender, "sender = {}", sender)
        rows = await conn.fetch(f"SELECT ... WHERE {w.sql()}", *w.args)
    """

    def __init__(self, first_index: int = 1):
        """``first_index`` > 1 leaves lower placeholders to the caller."""
        self.conditions: list[str] = []
        self.args: list[Any] = []
        self._next_index = first_index

    def bind(self, value: Any) -> str:
        """Register an argument and return its placeholder (LIMIT/OFFSET values)."""
        placeholder = f"${self._next_index}"
        self.args.append(value)
        self._next_index += 1
        return placeholder

    def where(self, template: str, *values: Any) -> "WhereBuilder":
        self.conditions.append(template.format(*(self.bind(v) for v in values)))
        return self

    def where_if(self, enabled: Any, template: str, *values: Any) -> "WhereBuilder":
        if enabled:
            self.where(template, *values)
        return self

    def sql(self) -> str:
        return " AND ".join(self.conditions) if self.conditions else "TRUE"
