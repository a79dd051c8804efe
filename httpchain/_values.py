from __future__ import annotations

import typing

import httpx

__all__ = [
    "HeaderTypes",
    "QueryParamTypes",
    "add_header",
    "add_headers",
    "add_query_param",
    "add_query_params",
    "grouped",
    "set_header",
    "set_headers",
    "set_query_param",
    "set_query_params",
]

ValueTypes = typing.Union[str, typing.Sequence[str]]
HeaderTypes = typing.Union[
    httpx.Headers,
    typing.Mapping[str, ValueTypes],
    typing.Sequence[typing.Tuple[str, str]],
]
QueryParamTypes = typing.Union[
    httpx.QueryParams,
    typing.Mapping[str, typing.Any],
    typing.Sequence[typing.Tuple[str, typing.Any]],
]


def _as_list(value: typing.Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    if value is None:
        return []
    return [str(value)]


def grouped(values: typing.Any) -> list[tuple[str, list[str]]]:
    """Normalize any header/query input to ``[(key, [value, ...]), ...]``.

    Key order is the order of first appearance.
    """
    if isinstance(values, httpx.Headers):
        encoding = values.encoding
        pairs: typing.Iterable[tuple[str, str]] = [
            (key.decode(encoding), value.decode(encoding))
            for key, value in values.raw
        ]
    elif isinstance(values, httpx.QueryParams):
        pairs = values.multi_items()
    elif isinstance(values, typing.Mapping):
        return [(str(key), _as_list(value)) for key, value in values.items()]
    else:
        pairs = [(str(key), str(value)) for key, value in values]

    result: dict[str, tuple[str, list[str]]] = {}
    for key, value in pairs:
        # Header names are grouped case-insensitively, query keys are not.
        lookup = key.lower() if isinstance(values, httpx.Headers) else key
        result.setdefault(lookup, (key, []))[1].append(value)
    return list(result.values())


# Headers
# -------
#
# ``set_*`` replaces every value of the key (an empty value deletes it),
# ``add_*`` appends.  All helpers return the resulting container.


def set_header(headers: httpx.Headers, key: str, value: str) -> httpx.Headers:
    if not value:
        headers.pop(key, None)
    else:
        headers[key] = str(value)
    return headers


def add_header(headers: httpx.Headers, key: str, value: str) -> httpx.Headers:
    raw = list(headers.raw)
    raw.append((key.encode(headers.encoding), str(value).encode(headers.encoding)))
    return httpx.Headers(raw)


def set_headers(headers: httpx.Headers, values: HeaderTypes) -> httpx.Headers:
    for key, items in grouped(values):
        headers = set_header(headers, key, items[0] if items else "")
    return headers


def add_headers(headers: httpx.Headers, values: HeaderTypes) -> httpx.Headers:
    for key, items in grouped(values):
        for item in items:
            headers = add_header(headers, key, item)
    return headers


# Query parameters
# ----------------


def set_query_param(
    params: httpx.QueryParams, key: str, value: typing.Any
) -> httpx.QueryParams:
    if value is None or value == "":
        return params.remove(key)
    return params.set(key, value)


def add_query_param(
    params: httpx.QueryParams, key: str, value: typing.Any
) -> httpx.QueryParams:
    return params.add(key, value)


def set_query_params(
    params: httpx.QueryParams, values: QueryParamTypes
) -> httpx.QueryParams:
    for key, items in grouped(values):
        params = set_query_param(params, key, items[0] if items else "")
    return params


def add_query_params(
    params: httpx.QueryParams, values: QueryParamTypes
) -> httpx.QueryParams:
    for key, items in grouped(values):
        for item in items:
            params = add_query_param(params, key, item)
    return params
