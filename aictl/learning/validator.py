"""Static safety scan for proposed task code.

Proposed code runs inside agents, so anything that reaches outside the
DSL sandbox (shelling out, metaprogramming, file and process access) is
reported as a violation. String literals and comments are blanked
before scanning so instructions text cannot trigger false positives.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

DANGEROUS_METHODS = {
    "system", "exec", "spawn", "fork", "eval", "instance_eval", "class_eval",
    "module_eval", "require", "load", "autoload", "require_relative",
    "send", "__send__", "public_send", "method", "const_set", "const_get",
    "remove_const", "define_method", "define_singleton_method",
    "undef_method", "remove_method", "alias_method",
    "exit", "exit!", "abort", "throw", "trap", "at_exit",
}

DANGEROUS_CONSTANTS = {
    "File", "Dir", "IO", "FileUtils", "Pathname",
    "Process", "Kernel", "ObjectSpace", "GC",
    "Thread", "Fiber", "Mutex", "ConditionVariable",
    "Socket", "TCPSocket", "UDPSocket", "TCPServer", "UDPServer",
    "STDIN", "STDOUT", "STDERR",
}

_LITERAL_RE = re.compile(r"""'(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*"|#[^\n]*""")
_CALL_RE = re.compile(r"(?<![\w:@$])([a-z_][A-Za-z0-9_]*[!?]?)(?=\s*\(|\s+[^\s=]|$)", re.MULTILINE)
_CONST_RE = re.compile(r"(?<![\w:])([A-Z][A-Za-z0-9_]*)\s*(?=\.|::)")
_SHELL_RE = re.compile(r"`|%x[\[({<|]")


class SafetyValidator(ABC):
    @abstractmethod
    def validate(self, code: str) -> list[str]:
        """Return a list of human-readable violations; empty means safe."""
        ...


class DenylistValidator(SafetyValidator):

    def validate(self, code: str) -> list[str]:
        violations: list[str] = []
        scrubbed = _LITERAL_RE.sub("''", code)
        if _SHELL_RE.search(scrubbed):
            violations.append("Shell execution via backticks or %x is not allowed")

        seen: set[str] = set()
        for match in _CALL_RE.finditer(scrubbed):
            name = match.group(1)
            if name in DANGEROUS_METHODS and name not in seen:
                seen.add(name)
                violations.append(f"Dangerous method call: {name}")
        for match in _CONST_RE.finditer(scrubbed):
            name = match.group(1)
            if name in DANGEROUS_CONSTANTS and name not in seen:
                seen.add(name)
                violations.append(f"Dangerous constant access: {name}")
        return violations
