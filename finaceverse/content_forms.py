"""Schema-driven editing of page content sections.

Stored content is a flat list of ``{page, section, content_key,
content_value, content_type}`` records. Array sections keep their ordered
items as one JSON record under ``items``; every item carries a
``display_order`` equal to its position.
"""
import copy
import json

from .content_schemas import ARRAY_ITEMS_KEY, schema_fields
from .utils import safe_json_loads

ARRAY_ACTIONS = ('add', 'remove', 'up', 'down', 'duplicate')


def parse_tags(raw):
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        parts = raw
    else:
        parts = str(raw).split(',')
    return [' '.join(str(part).split()) for part in parts if str(part).strip()]


def format_tags(values):
    return ', '.join(parse_tags(values))


def _coerce_number(raw, default):
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, (int, float)):
        return raw
    text = str(raw or '').strip()
    if not text:
        return default
    try:
        number = float(text)
    except ValueError:
        return default
    if number.is_integer() and '.' not in text and 'e' not in text.lower():
        return int(number)
    return number


def _coerce_bool(raw):
    if isinstance(raw, bool):
        return raw
    return str(raw or '').strip().lower() in {'1', 'true', 'yes', 'on'}


def coerce_value(field, raw):
    field_type = field.get('type', 'text')
    default = field.get('default')
    if field_type == 'number':
        return _coerce_number(raw, default if default is not None else 0)
    if field_type == 'checkbox':
        return _coerce_bool(raw)
    if field_type == 'tags':
        return parse_tags(raw)

    value = '' if raw is None else str(raw).strip()
    if field_type == 'select':
        allowed = {option['value'] for option in field.get('options', [])}
        if allowed and value not in allowed:
            return default
        return value
    max_length = field.get('max_length')
    if max_length:
        value = value[:max_length]
    return value


def serialize_value(field, value):
    field_type = field.get('type', 'text')
    if field_type == 'tags':
        return json.dumps(parse_tags(value)), 'json'
    if field_type == 'number':
        return str(_coerce_number(value, field.get('default') or 0)), 'number'
    if field_type == 'checkbox':
        return ('true' if _coerce_bool(value) else 'false'), 'boolean'
    return ('' if value is None else str(value)), 'text'


def deserialize_value(content_value, content_type, field=None):
    if content_type == 'json':
        parsed = safe_json_loads(content_value, None)
        if parsed is not None:
            return parsed
        if field and field.get('type') == 'tags':
            return parse_tags(content_value)
        return field.get('default') if field else None
    if content_type == 'number':
        return _coerce_number(content_value, field.get('default', 0) if field else 0)
    if content_type == 'boolean':
        return _coerce_bool(content_value)
    if field:
        return coerce_value(field, content_value)
    return content_value


def _reindexed(items):
    result = []
    for index, item in enumerate(items):
        entry = dict(item)
        entry['display_order'] = index
        result.append(entry)
    return result


def default_item(schema):
    return {field['key']: copy.deepcopy(field.get('default')) for field in schema_fields(schema)}


def append_item(items, schema):
    return _reindexed(list(items) + [default_item(schema)])


def remove_item(items, index):
    items = list(items)
    if 0 <= index < len(items):
        del items[index]
    return _reindexed(items)


def move_item(items, index, direction):
    items = list(items)
    if direction in ('up', -1):
        target = index - 1
    elif direction in ('down', 1):
        target = index + 1
    else:
        raise ValueError(f'Unknown move direction: {direction}')
    if 0 <= index < len(items) and 0 <= target < len(items):
        items[index], items[target] = items[target], items[index]
    return _reindexed(items)


def duplicate_item(items, index):
    items = list(items)
    if 0 <= index < len(items):
        items.insert(index + 1, copy.deepcopy(items[index]))
    return _reindexed(items)


def apply_array_action(items, schema, action):
    name, _, raw_index = (action or '').partition(':')
    if name not in ARRAY_ACTIONS:
        raise ValueError(f'Unknown array action: {action}')
    if name == 'add':
        return append_item(items, schema)
    try:
        index = int(raw_index)
    except ValueError as exc:
        raise ValueError(f'Array action needs an item index: {action}') from exc
    if name == 'remove':
        return remove_item(items, index)
    if name == 'duplicate':
        return duplicate_item(items, index)
    return move_item(items, index, name)


def group_content(records):
    grouped = {}
    for record in records or []:
        if not isinstance(record, dict):
            continue
        page = record.get('page')
        section = record.get('section')
        key = record.get('content_key')
        if not page or not section or not key:
            continue
        grouped.setdefault(page, {}).setdefault(section, {})[key] = {
            'id': record.get('id'),
            'value': record.get('content_value'),
            'type': record.get('content_type') or 'text',
        }
    return grouped


def section_state(grouped, page, section, schema):
    stored = (grouped or {}).get(page, {}).get(section, {})
    if schema['kind'] == 'array':
        entry = stored.get(ARRAY_ITEMS_KEY)
        items = deserialize_value(entry['value'], entry['type']) if entry else None
        if not isinstance(items, list):
            items = copy.deepcopy(schema.get('default_items', []))
        fields = schema_fields(schema)
        normalized = []
        for item in items:
            if not isinstance(item, dict):
                continue
            normalized.append({
                field['key']: coerce_value(field, item.get(field['key'], field.get('default')))
                for field in fields
            })
        return _reindexed(normalized)

    state = {}
    for field in schema_fields(schema):
        entry = stored.get(field['key'])
        if entry is None:
            state[field['key']] = copy.deepcopy(field.get('default'))
        else:
            state[field['key']] = deserialize_value(entry['value'], entry['type'], field)
    return state


def parse_section_form(form, schema):
    fields = schema_fields(schema)
    if schema['kind'] != 'array':
        return {field['key']: coerce_value(field, form.get(field['key'])) for field in fields}

    try:
        count = max(0, int(form.get('item_count', 0)))
    except (TypeError, ValueError):
        count = 0
    items = []
    for index in range(count):
        items.append({
            field['key']: coerce_value(field, form.get(f'items-{index}-{field["key"]}'))
            for field in fields
        })
    return _reindexed(items)


def build_bulk_items(page, section, schema, state):
    if schema['kind'] == 'array':
        return [{
            'page': page,
            'section': section,
            'content_key': ARRAY_ITEMS_KEY,
            'content_value': json.dumps(_reindexed(state)),
            'content_type': 'json',
        }]

    items = []
    for field in schema_fields(schema):
        value, content_type = serialize_value(field, state.get(field['key']))
        items.append({
            'page': page,
            'section': section,
            'content_key': field['key'],
            'content_value': value,
            'content_type': content_type,
        })
    return items


def validate_section(schema, state):
    """Return a list of messages for required fields left empty."""
    errors = []
    fields = [field for field in schema_fields(schema) if field.get('required')]
    rows = state if schema['kind'] == 'array' else [state]
    for position, row in enumerate(rows, start=1):
        for field in fields:
            if row.get(field['key']) in (None, '', []):
                prefix = f"{schema.get('item_label', 'Item')} {position}: " if schema['kind'] == 'array' else ''
                errors.append(f"{prefix}{field['label']} is required.")
    return errors
