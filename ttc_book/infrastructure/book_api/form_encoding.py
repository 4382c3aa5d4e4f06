"""
Serializacion de payloads anidados a form-urlencoded con notacion de corchetes.

La API espera los objetos anidados (filtros, fieldValues, rows) como lo hace
un backend PHP:

    {"filter": {"ops": [{"id": "a"}]}}  ->  filter[ops][0][id]=a

- bool -> "true" / "false"
- None -> "" (clave presente con valor vacio, para poder vaciar campos)
- listas -> indices numericos
"""

from __future__ import annotations

from typing import Any, Mapping


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _flatten(prefix: str, value: Any, out: list[tuple[str, str]]) -> None:
    if isinstance(value, Mapping):
        for key, item in value.items():
            _flatten(f"{prefix}[{key}]", item, out)
        return
    if isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _flatten(f"{prefix}[{index}]", item, out)
        return
    out.append((prefix, _scalar(value)))


def encode_form(data: Mapping[str, Any]) -> dict[str, str]:
    """
    Aplana un dict anidado en un dict plano listo para data= de httpx.

    Las claves generadas son unicas (los indices de lista forman parte de la
    clave), asi que no se pierde nada al volver a dict; el orden se conserva.
    """
    out: list[tuple[str, str]] = []
    for key, value in data.items():
        _flatten(str(key), value, out)
    return dict(out)
