from __future__ import annotations

"""
Module declaration reader.

WHY THIS FILE EXISTS:
A module says where it wants to live (installPath, namespace) inside its
`*Module.php` class. The installer needs that answer before any of the
module's code is trusted, so the file is parsed with the tree-sitter PHP
grammar and only literal values are read back: the namespace, the class
header, and the arguments of the `configureModule()` return chain.
"""

import glob
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import tree_sitter_php
from tree_sitter import Language, Node, Parser

from wkpm.core.modules.models import ModuleMetadata


DECLARATION_PATTERN = "*Module.php"
ENTRY_METHOD = "configureModule"

PHP_LANGUAGE = Language(tree_sitter_php.language_php())

# builder method -> ModuleMetadata field
_SCALAR_FIELDS = {
    "id": "id",
    "name": "name",
    "version": "version",
    "description": "description",
    "phpVersion": "php_version",
    "webkernelVersion": "webkernel_version_constraint",
}

_CALL_TYPES = {"member_call_expression", "nullsafe_member_call_expression"}
_STRING_PARTS = {"string", "string_content", "string_value", "escape_sequence"}

_SINGLE_QUOTE_ESCAPE = re.compile(r"\\([\\'])")
_DOUBLE_QUOTE_ESCAPE = re.compile(r'\\(u\{[0-9A-Fa-f]{1,6}\}|x[0-9A-Fa-f]{1,2}|[0-7]{1,3}|[nrtvef\\$"])')
_SIMPLE_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "v": "\v", "e": "\x1b", "f": "\f", "\\": "\\", "$": "$", '"': '"'}


@dataclass
class ClassInfo:
    name: str
    extends: Optional[str] = None
    methods: List[str] = field(default_factory=list)

    @property
    def extends_short(self) -> str:
        # last segment of a qualified name: \Webkernel\Arcanes\WebkernelApp -> WebkernelApp
        return (self.extends or "").rsplit("\\", 1)[-1]

    def has_method(self, name: str) -> bool:
        return name.lower() in (m.lower() for m in self.methods)


@dataclass
class DeclarationFile:
    path: str
    namespace: Optional[str]
    classes: List[ClassInfo] = field(default_factory=list)
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def main_class(self) -> Optional[ClassInfo]:
        """
        The class named after the file when present, else the last one declared.
        """
        if not self.classes:
            return None
        stem = os.path.splitext(os.path.basename(self.path))[0]
        for cls in self.classes:
            if cls.name == stem:
                return cls
        return self.classes[-1]


def find_declaration_file(module_path: str) -> Optional[str]:
    for path in sorted(glob.glob(os.path.join(glob.escape(module_path), DECLARATION_PATTERN))):
        if os.path.isfile(path):
            return path
    return None


# ---- syntax tree helpers ----
def _text(node: Optional[Node]) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _named(node: Optional[Node]) -> List[Node]:
    if node is None:
        return []
    return [c for c in node.named_children if c.type != "comment"]


def _child(node: Node, field_name: str, node_type: str) -> Optional[Node]:
    found = node.child_by_field_name(field_name)
    if found is not None:
        return found
    for c in node.named_children:
        if c.type == node_type:
            return c
    return None


def _unescape_double(m: "re.Match[str]") -> str:
    seq = m.group(1)
    if seq in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[seq]
    if seq[0] == "u":
        return chr(int(seq[2:-1], 16))
    if seq[0] == "x":
        return chr(int(seq[1:], 16))
    return chr(int(seq, 8) & 0xFF)


def _quoted(node: Node) -> Optional[str]:
    raw = _text(node)
    if raw[:1] in ("b", "B"):
        raw = raw[1:]
    if node.type == "string":
        return _SINGLE_QUOTE_ESCAPE.sub(r"\1", raw[1:-1])
    if node.type == "encapsed_string":
        if any(c.type not in _STRING_PARTS for c in _named(node)):
            # interpolation: not a literal
            return None
        return _DOUBLE_QUOTE_ESCAPE.sub(_unescape_double, raw[1:-1])
    return None


def _literal(node: Node) -> Optional[str]:
    """
    A string literal or a `.` concatenation of them; anything else is None.
    """
    parts: List[str] = []
    stack = [node]
    while stack:
        n = stack.pop()
        if n.type == "parenthesized_expression":
            inner = _named(n)
            if len(inner) != 1:
                return None
            stack.append(inner[0])
            continue
        if n.type == "binary_expression":
            left = n.child_by_field_name("left")
            right = n.child_by_field_name("right")
            if _text(n.child_by_field_name("operator")) != "." or left is None or right is None:
                return None
            stack.append(right)
            stack.append(left)
            continue
        value = _quoted(n)
        if value is None:
            return None
        parts.append(value)
    return "".join(parts)


def _string_map(array: Node) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in _named(array):
        if item.type != "array_element_initializer":
            continue
        pair = _named(item)
        if len(pair) != 2:
            continue
        key, value = _literal(pair[0]), _literal(pair[1])
        if key is not None and value is not None:
            out[key] = value
    return out


def _arguments(node: Optional[Node]) -> List[Tuple[Optional[str], Node]]:
    out: List[Tuple[Optional[str], Node]] = []
    for arg in _named(node):
        if arg.type != "argument":
            continue
        parts = _named(arg)
        if not parts:
            continue
        name = arg.child_by_field_name("name")
        out.append((_text(name) if name is not None else None, parts[-1]))
    return out


# ---- builder chain ----
def _read_install_path(args: List[Tuple[Optional[str], Node]], out: Dict[str, Any]) -> None:
    named = {n: v for n, v in args if n}
    positional = [v for n, v in args if not n]
    where = named.get("in")
    if where is None and positional:
        where = positional[0]
    owner = named.get("for")
    if owner is None and len(positional) > 1:
        owner = positional[1]
    if where is not None and _literal(where) is not None:
        out["installPath"] = _literal(where)
    if owner is not None and _literal(owner) is not None:
        out["namespace"] = _literal(owner)


def _read_chain(expr: Node, out: Dict[str, Any]) -> None:
    calls: List[Tuple[str, List[Tuple[Optional[str], Node]]]] = []
    node: Optional[Node] = expr
    while node is not None and node.type in _CALL_TYPES:
        name = node.child_by_field_name("name")
        if name is not None and name.type == "name":
            calls.append((_text(name), _arguments(node.child_by_field_name("arguments"))))
        node = node.child_by_field_name("object")

    # innermost call first, so later calls in the chain win
    for method, args in reversed(calls):
        first = args[0][1] if args else None
        if method == "installPath" and args:
            _read_install_path(args, out)
        elif first is not None and _literal(first) is not None:
            out[method] = _literal(first)
        elif method == "supportElements" and first is not None and first.type == "array_creation_expression":
            out["supportElements"] = _string_map(first)


def _read_class(node: Node, config: Dict[str, Any]) -> ClassInfo:
    info = ClassInfo(name=_text(_child(node, "name", "name")))
    for c in node.named_children:
        if c.type == "base_clause":
            parents = _named(c)
            if parents:
                info.extends = _text(parents[0]).lstrip("\\")

    for member in _named(_child(node, "body", "declaration_list")):
        if member.type != "method_declaration":
            continue
        method = _text(_child(member, "name", "name"))
        info.methods.append(method)
        if method.lower() != ENTRY_METHOD.lower():
            continue
        for stmt in _named(_child(member, "body", "compound_statement")):
            if stmt.type != "return_statement":
                continue
            value = _named(stmt)
            if value and value[0].type in _CALL_TYPES:
                _read_chain(value[0], config)
    return info


def _read_declaration(path: str, source: bytes) -> Optional[DeclarationFile]:
    tree = Parser(PHP_LANGUAGE).parse(source)
    root = tree.root_node
    if root.has_error:
        return None

    namespace: Optional[str] = None
    class_nodes: List[Node] = []
    for node in _named(root):
        if node.type == "namespace_definition":
            name = _child(node, "name", "namespace_name")
            if name is not None:
                namespace = _text(name).lstrip("\\")
            body = node.child_by_field_name("body")
            class_nodes.extend(c for c in _named(body) if c.type == "class_declaration")
        elif node.type == "class_declaration":
            class_nodes.append(node)

    config: Dict[str, Any] = {}
    classes = [_read_class(n, config) for n in class_nodes]
    if namespace is None or not classes:
        return None
    return DeclarationFile(path=path, namespace=namespace, classes=classes, config=config)


def parse_declaration_file(path: str) -> Optional[DeclarationFile]:
    """
    Parse a declaration file without executing it. Returns None when the file
    is missing, unreadable, not valid PHP, or declares no namespace or class.
    """
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "rb") as f:
            source = f.read()
    except OSError:
        return None
    try:
        return _read_declaration(path, source)
    except (ValueError, RecursionError):
        return None


def metadata_from_declaration(decl: DeclarationFile) -> ModuleMetadata:
    cfg = dict(decl.config)
    values: Dict[str, Any] = {}
    extra: Dict[str, str] = {}
    for key, value in cfg.items():
        if key in _SCALAR_FIELDS:
            values[_SCALAR_FIELDS[key]] = value
        elif key not in ("installPath", "namespace", "supportElements"):
            extra[key] = value

    main = decl.main_class
    return ModuleMetadata(
        install_path=str(cfg.get("installPath") or ""),
        namespace=str(cfg.get("namespace") or decl.namespace or ""),
        support_elements=dict(cfg.get("supportElements") or {}),
        extra=extra,
        class_name=main.name if main is not None else "",
        source_file=decl.path,
        **values,
    )


def from_declaration_file(path: str) -> Optional[ModuleMetadata]:
    decl = parse_declaration_file(path)
    if decl is None:
        return None
    return metadata_from_declaration(decl)


def from_module_dir(module_path: str) -> Optional[ModuleMetadata]:
    path = find_declaration_file(module_path)
    if path is None:
        return None
    return from_declaration_file(path)
