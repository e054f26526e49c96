"""
Validation of lab result payloads.

A result is ``{"parameters": [...], "interpretation": str?, "attachments": [uri, ...]}``
where every parameter is ``{"name", "value", "unit"?, "normalRange"?}``.
Units are free text unless the order's catalog test lists accepted
units, in which case any other unit is rejected.  Attachments are
opaque URIs produced by the upload collaborator; only their shape is
checked here.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional
from urllib.parse import urlparse

from django.conf import settings

from labs.exceptions import InvalidResult

PARAMETER_KEYS = frozenset({'name', 'value', 'unit', 'normalRange'})


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def _check_parameter(index: int, entry: Any, allowed_units: frozenset, seen: set, errors: list) -> Optional[dict]:
    where = f'parameters[{index}]'
    if not isinstance(entry, Mapping):
        errors.append(f'{where}: must be an object')
        return None

    unknown = set(entry) - PARAMETER_KEYS
    if unknown:
        errors.append(f'{where}: unknown keys {sorted(unknown)}')

    name = entry.get('name')
    if not isinstance(name, str) or not name.strip():
        errors.append(f'{where}.name: required')
    elif name.strip().lower() in seen:
        errors.append(f'{where}.name: duplicate parameter {name!r}')
    else:
        seen.add(name.strip().lower())

    value = entry.get('value')
    if not _is_scalar(value) or (isinstance(value, str) and not value.strip()):
        errors.append(f'{where}.value: required')

    unit = entry.get('unit')
    if unit is not None:
        if not isinstance(unit, str):
            errors.append(f'{where}.unit: must be a string')
        elif allowed_units and unit not in allowed_units:
            errors.append(f'{where}.unit: {unit!r} is not a recognized unit for this test')

    normal_range = entry.get('normalRange')
    if normal_range is not None and not isinstance(normal_range, str):
        errors.append(f'{where}.normalRange: must be a string')

    return {k: v for k, v in entry.items() if k in PARAMETER_KEYS and v is not None}


def _check_attachment(index: int, uri: Any, errors: list) -> None:
    where = f'attachments[{index}]'
    if not isinstance(uri, str) or not uri.strip():
        errors.append(f'{where}: must be a non-empty string')
        return
    if len(uri) > settings.LAB_ATTACHMENT_MAX_LEN:
        errors.append(f'{where}: too long')
        return
    if any(c.isspace() for c in uri):
        errors.append(f'{where}: must not contain whitespace')
        return
    parsed = urlparse(uri)
    if not (parsed.scheme or uri.startswith('/')):
        errors.append(f'{where}: must be an absolute URI or path')


def validate_result(payload: Any, *, test=None) -> dict:
    """Return the normalized result or raise :class:`InvalidResult`.

    ``test`` is the order's catalog entry, if any.
    """
    if not isinstance(payload, Mapping):
        raise InvalidResult('Result must be an object')

    errors: list[str] = []
    allowed_units = frozenset(test.units or []) if test is not None else frozenset()

    parameters = payload.get('parameters')
    if parameters is None:
        parameters = []
    if not isinstance(parameters, list):
        errors.append('parameters: must be a list')
        parameters = []

    seen: set[str] = set()
    cleaned = []
    for i, entry in enumerate(parameters):
        item = _check_parameter(i, entry, allowed_units, seen, errors)
        if item is not None:
            cleaned.append(item)

    interpretation = payload.get('interpretation')
    if interpretation is not None and not isinstance(interpretation, str):
        errors.append('interpretation: must be a string')

    attachments = payload.get('attachments')
    if attachments is None:
        attachments = []
    if not isinstance(attachments, list):
        errors.append('attachments: must be a list')
        attachments = []
    for i, uri in enumerate(attachments):
        _check_attachment(i, uri, errors)

    if errors:
        raise InvalidResult('Result payload is malformed', detail=errors)

    return {
        'parameters': cleaned,
        'interpretation': interpretation or None,
        'attachments': list(attachments),
    }
