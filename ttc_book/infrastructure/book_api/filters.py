"""
Construccion de filtros applyViewFilters para getTableValues.

Forma del payload:

    {"applyViewFilters": {"filterGroup": {"operator": "and", "filters": [
        {"id": "tmpId", "json": {"predicate": "is", "operand": "..."},
         "field_id": 123, "filter_type": "text"}
    ]}}}
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence, Union

from ttc_book.infrastructure.book_api.types import Table, find_by_key
from ttc_book.shared.exceptions.domain import EntityNotFoundException, ValidationException

DEFAULT_OPERATOR = "and"
DEFAULT_PREDICATE = "is"
DEFAULT_FILTER_TYPE = "text"
SINGLE_CLAUSE_ID = "tmpId"

FilterCondition = Mapping[str, Any]


def build_clause(
    clause_id: str,
    field_id: Any,
    operand: Any,
    predicate: str = DEFAULT_PREDICATE,
    filter_type: str = DEFAULT_FILTER_TYPE,
) -> dict[str, Any]:
    return {
        "id": clause_id,
        "json": {
            "predicate": predicate,
            "operand": operand,
        },
        "field_id": field_id,
        "filter_type": filter_type,
    }


def build_filter_group(clauses: list[dict[str, Any]], operator: str = DEFAULT_OPERATOR) -> dict[str, Any]:
    return {
        "applyViewFilters": {
            "filterGroup": {
                "operator": operator,
                "filters": clauses,
            }
        }
    }


def build_equality_filter(field_id: Any, value: Any) -> dict[str, Any]:
    """Filtro de una sola clausula "is" sobre un campo de texto."""
    return build_filter_group([build_clause(SINGLE_CLAUSE_ID, field_id, value)])


def build_filter_config(
    table: Table,
    config: Union[FilterCondition, Sequence[FilterCondition]],
    operator: str = DEFAULT_OPERATOR,
) -> dict[str, Any]:
    """
    Traduce condiciones por fixed_code a un filtro con ids internos de campo.

    Cada condicion: {"key": fixed_code, "value": operando,
    "operand": predicado (default "is"), "filterType": (default "text")}.

    Returns:
        {"tableId": ..., "filter": {"applyViewFilters": ...}}

    Raises:
        EntityNotFoundException: si un fixed_code no existe en la tabla
    """
    configs = [config] if isinstance(config, Mapping) else list(config)
    if not configs:
        raise ValidationException("at least one filter condition is required", field="config")
    single = len(configs) == 1

    clauses = []
    for index, condition in enumerate(configs):
        key = condition.get("key")
        field = find_by_key(table.get("fields"), "fixed_code", key)
        if field is None:
            raise EntityNotFoundException(
                f"could not find a filter config for field {key}",
                entity_name="field",
                entity_id=key,
            )
        clauses.append(
            build_clause(
                SINGLE_CLAUSE_ID if single else f"tmp{index}",
                field["id"],
                condition.get("value"),
                predicate=condition.get("operand") or DEFAULT_PREDICATE,
                filter_type=condition.get("filterType") or DEFAULT_FILTER_TYPE,
            )
        )

    return {
        "tableId": table.get("id"),
        "filter": build_filter_group(clauses, operator),
    }
