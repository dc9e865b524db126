import re
from dataclasses import dataclass
from typing import Any, List, Literal, Mapping, Tuple

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

ClauseOp = Literal["eq", "in", "not_in"]


def is_identifier(name: str) -> bool:
    return bool(IDENTIFIER_PATTERN.match(name or ""))


@dataclass(frozen=True)
class Clause:
    column: str
    op: ClauseOp
    value: Any

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = row.get(self.column)
        if self.op == "eq":
            return current is not None and current == self.value
        if self.op == "in":
            return current is not None and current in self.value
        # NULL is "not in" any set.
        return current is None or current not in self.value

    def to_sql(self) -> Tuple[str, List[Any]]:
        if self.op == "eq":
            return f"{self.column} = ?", [self.value]
        values = list(self.value)
        if self.op == "in":
            if not values:
                return "0", []
            placeholders = ", ".join("?" for _ in values)
            return f"{self.column} IN ({placeholders})", values
        if not values:
            return "1", []
        placeholders = ", ".join("?" for _ in values)
        return f"({self.column} IS NULL OR {self.column} NOT IN ({placeholders}))", values


def eq(column: str, value: Any) -> Clause:
    return Clause(column=column, op="eq", value=value)


def in_(column: str, values: Any) -> Clause:
    return Clause(column=column, op="in", value=tuple(values))


def not_in(column: str, values: Any) -> Clause:
    return Clause(column=column, op="not_in", value=tuple(values))


@dataclass(frozen=True)
class RecordFilter:
    """Row predicate: every ``all_of`` clause and, when given, at least one ``any_of`` clause."""

    all_of: Tuple[Clause, ...] = ()
    any_of: Tuple[Clause, ...] = ()

    @property
    def columns(self) -> List[str]:
        return [clause.column for clause in (*self.all_of, *self.any_of)]

    def matches(self, row: Mapping[str, Any]) -> bool:
        if not all(clause.matches(row) for clause in self.all_of):
            return False
        if self.any_of and not any(clause.matches(row) for clause in self.any_of):
            return False
        return True

    def to_sql(self) -> Tuple[str, List[Any]]:
        parts: List[str] = []
        params: List[Any] = []
        for clause in self.all_of:
            sql, values = clause.to_sql()
            parts.append(sql)
            params.extend(values)
        if self.any_of:
            group: List[str] = []
            for clause in self.any_of:
                sql, values = clause.to_sql()
                group.append(sql)
                params.extend(values)
            parts.append("(" + " OR ".join(group) + ")")
        if not parts:
            return "1", []
        return " AND ".join(parts), params


def where(*clauses: Clause, any_of: Tuple[Clause, ...] = ()) -> RecordFilter:
    return RecordFilter(all_of=tuple(clauses), any_of=tuple(any_of))
