"""
Template expressions

A template embeds references in ``{{ ... }}`` blocks. A reference names a
node's output and walks into it, e.g. ``{{ $node["Webhook"].contact.phone }}``
or ``{{ $node["Webhook"]["items"][0] }}``.
"""
import json
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple, Union

from ..exceptions import ExpressionSyntaxError, UnresolvedReferenceError


BLOCK_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
REFERENCE_RE = re.compile(
    r"""^\$node\[\s*(?:"(?P<dq>[^"]+)"|'(?P<sq>[^']+)')\s*\]"""
    r"""(?P<path>(?:\.[A-Za-z_][A-Za-z0-9_]*|\[\s*(?:"[^"]*"|'[^']*'|\d+)\s*\])*)$"""
)
ACCESSOR_RE = re.compile(
    r"""\.(?P<attr>[A-Za-z_][A-Za-z0-9_]*)|\[\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<index>\d+))\s*\]"""
)


@dataclass(frozen=True)
class Reference:
    """A parsed ``$node[...]`` reference"""
    node: str
    path: Tuple[Union[str, int], ...] = ()

    def __str__(self) -> str:
        text = f'$node["{self.node}"]'
        for part in self.path:
            text += f"[{part}]" if isinstance(part, int) else f'["{part}"]'
        return text

    @classmethod
    def parse(cls, expression: str) -> "Reference":
        match = REFERENCE_RE.match(expression.strip())
        if not match:
            raise ExpressionSyntaxError(expression.strip())
        path: List[Union[str, int]] = []
        for accessor in ACCESSOR_RE.finditer(match.group("path")):
            if accessor.group("index") is not None:
                path.append(int(accessor.group("index")))
            else:
                key = accessor.group("attr")
                if key is None:
                    key = accessor.group("dq") if accessor.group("dq") is not None else accessor.group("sq")
                path.append(key)
        return cls(node=match.group("dq") or match.group("sq"), path=tuple(path))

    def resolve(self, bindings: Mapping[str, Any]) -> Any:
        if self.node not in bindings:
            raise UnresolvedReferenceError(str(self), f"node '{self.node}' has no output")
        value = bindings[self.node]
        for part in self.path:
            if isinstance(part, int) and isinstance(value, (list, tuple)):
                if part >= len(value):
                    raise UnresolvedReferenceError(str(self), f"index {part} out of range")
                value = value[part]
            elif isinstance(value, Mapping) and str(part) in value:
                value = value[str(part)]
            else:
                raise UnresolvedReferenceError(str(self), f"missing field '{part}'")
        return value


class ExpressionEvaluator:
    """Resolves templates against a run's bindings; pure and deterministic"""

    def references(self, template: Any) -> List[Reference]:
        """All references in a template, raising ExpressionSyntaxError on bad blocks"""
        if isinstance(template, str):
            return [Reference.parse(block) for block in BLOCK_RE.findall(template)]
        if isinstance(template, Mapping):
            return [ref for value in template.values() for ref in self.references(value)]
        if isinstance(template, (list, tuple)):
            return [ref for value in template for ref in self.references(value)]
        return []

    def evaluate(self, template: Any, bindings: Mapping[str, Any]) -> Any:
        """
        Evaluate a template.

        A template that is exactly one block returns the referenced value
        unchanged; any other string has its blocks substituted. Mappings and
        lists are evaluated recursively, other values pass through.
        """
        if isinstance(template, Mapping):
            return {key: self.evaluate(value, bindings) for key, value in template.items()}
        if isinstance(template, (list, tuple)):
            return [self.evaluate(value, bindings) for value in template]
        if not isinstance(template, str):
            return template

        blocks = list(BLOCK_RE.finditer(template))
        if len(blocks) == 1 and blocks[0].group(0) == template.strip():
            return Reference.parse(blocks[0].group(1)).resolve(bindings)
        return self.render(template, bindings)

    def render(self, template: Any, bindings: Mapping[str, Any]) -> str:
        """Evaluate a template and always produce a string"""
        if not isinstance(template, str):
            return self._to_text(template)

        def substitute(match: re.Match) -> str:
            return self._to_text(Reference.parse(match.group(1)).resolve(bindings))

        return BLOCK_RE.sub(substitute, template)

    def _to_text(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (Mapping, list, tuple)):
            return json.dumps(value, ensure_ascii=False, sort_keys=True)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
