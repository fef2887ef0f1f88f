import re
from typing import Any, List, Mapping

_VARIABLE_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def render_template(content: str, data: Mapping[str, Any]) -> str:
    """Replace every {{name}} with str(data[name]); names missing from data (or None) render as ''."""
    def _sub(m: re.Match) -> str:
        value = data.get(m.group(1))
        return "" if value is None else str(value)

    return _VARIABLE_RE.sub(_sub, content or "")


def extract_variables(content: str) -> List[str]:
    """Placeholder names in order of first appearance."""
    seen: List[str] = []
    for name in _VARIABLE_RE.findall(content or ""):
        if name not in seen:
            seen.append(name)
    return seen
