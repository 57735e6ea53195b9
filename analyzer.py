import re

from canonical import canonicalize, pretty
from models import Category, ChangeRecord

FIELDS = (
    ("title", "Title", Category.ON_PAGE),
    ("meta_description", "Meta Description", Category.ON_PAGE),
    ("h1", "H1", Category.ON_PAGE),
    ("canonical", "Canonical URL", Category.TECHNICAL),
    ("meta_robots", "Meta Robots", Category.TECHNICAL),
)

EMPTY = "(empty)"
_LINE_RE = re.compile(r'^(?P<field>.*?): "(?P<old>(?:[^"\\]|\\.)*)" → "(?P<new>(?:[^"\\]|\\.)*)"$', re.S)


def humanize_key(key):
    parts = [p for p in re.split(r"(?=[A-Z])", key) if p]
    return " ".join(p[0].upper() + p[1:] for p in parts)


def format_value(value):
    """Render a JSON-LD value as a short display string."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return ", ".join(format_value(v) or "" for v in value)
    if isinstance(value, dict):
        entries = list(value.items())
        shown = ", ".join(f"{k}: {_nested(v)}" for k, v in entries[:3])
        suffix = "..." if len(entries) > 3 else ""
        return "{" + shown + suffix + "}"
    return str(value)


def _nested(value):
    out = format_value(value)
    return "null" if out is None else out


def schema_type(item, default=None):
    if isinstance(item, dict) and item.get("@type"):
        return format_value(item["@type"])
    return default


def _as_list(value):
    return value if isinstance(value, list) else [value]


def _whole_label(action, value):
    types = []
    for item in _as_list(value):
        t = schema_type(item)
        if t and t not in types:
            types.append(t)
    if types:
        return f"Schema: {action} ({', '.join(types)})"
    return f"Schema: {action}"


def compare_json_ld(old, new):
    changes = []
    if old is None and new is None:
        return changes
    if old is None:
        return [ChangeRecord(_whole_label("Added", new), None, pretty(new), Category.SCHEMA)]
    if new is None:
        return [ChangeRecord(_whole_label("Removed", old), pretty(old), None, Category.SCHEMA)]

    old_items, new_items = _as_list(old), _as_list(new)
    for i in range(max(len(old_items), len(new_items))):
        # a null element counts as an empty position
        old_item = old_items[i] if i < len(old_items) else None
        new_item = new_items[i] if i < len(new_items) else None
        if old_item is None and new_item is None:
            continue
        if old_item is None:
            changes.append(ChangeRecord(f"Schema: Added ({schema_type(new_item, 'Unknown')})",
                                        None, pretty(new_item), Category.SCHEMA))
            continue
        if new_item is None:
            changes.append(ChangeRecord(f"Schema: Removed ({schema_type(old_item, 'Unknown')})",
                                        pretty(old_item), None, Category.SCHEMA))
            continue

        label = schema_type(old_item) or schema_type(new_item) or "Schema"
        if not isinstance(old_item, dict) or not isinstance(new_item, dict):
            if canonicalize(old_item) != canonicalize(new_item):
                changes.append(ChangeRecord(f"Schema: {label} - Value", format_value(old_item),
                                            format_value(new_item), Category.SCHEMA))
            continue

        keys = list(old_item) + [k for k in new_item if k not in old_item]
        for key in keys:
            if key == "@context":
                continue
            old_value, new_value = old_item.get(key), new_item.get(key)
            if canonicalize(old_value) != canonicalize(new_value):
                changes.append(ChangeRecord(f"Schema: {label} - {humanize_key(key)}",
                                            format_value(old_value), format_value(new_value),
                                            Category.SCHEMA))
    return changes


def diff_fields(old, new):
    """Field-by-field diff of two ExtractedFields; used on both hash paths."""
    changes = []
    for attr, label, category in FIELDS:
        before, after = getattr(old, attr), getattr(new, attr)
        if before != after:
            changes.append(ChangeRecord(label, before, after, category))

    old_ld, new_ld = old.json_ld, new.json_ld
    if (old_ld is not None or new_ld is not None) and canonicalize(old_ld) != canonicalize(new_ld):
        changes.extend(compare_json_ld(old_ld, new_ld))
    return changes


def primary_category(changes, default=Category.TECHNICAL):
    counts = {}
    for c in changes:
        counts[c.category] = counts.get(c.category, 0) + 1
    if not counts:
        return default
    # max() keeps the first key on ties, i.e. first-seen category wins
    return max(counts, key=counts.get)


def escape_value(value):
    if value is None:
        return EMPTY
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def unescape_value(text):
    if text == EMPTY:
        return None
    return re.sub(r'\\(["\\n])', lambda m: "\n" if m.group(1) == "n" else m.group(1), text)


def format_change(change):
    if change.old is None and change.new is None:
        return f"{change.field} changed"
    return f'{change.field}: "{escape_value(change.old)}" → "{escape_value(change.new)}"'


def parse_change_line(line):
    """Inverse of format_change. Returns (field, old, new) or None if unparseable."""
    m = _LINE_RE.match(line)
    if m:
        return m.group("field"), unescape_value(m.group("old")), unescape_value(m.group("new"))
    if line.endswith(" changed"):
        return line[:-len(" changed")], None, None
    return None
