"""Agent source parsing and task splicing.

Agent code is a block-structured DSL:

    agent "billing-bot" do
      description "Summarizes invoices"

      task :fetch,
        instructions: "Fetch the invoice",
        inputs: { id: 'string' },
        outputs: { invoice: 'hash' }

      task :summarize,
        inputs: { invoice: 'hash' },
        outputs: { summary: 'string' } do |inputs|
        { summary: inputs[:invoice][:total].to_s }
      end

      main do |inputs|
        execute_task(:summarize, inputs: execute_task(:fetch, inputs: inputs))
      end
    end

`AgentSource.parse` splits the text into an ordered list of segments:
one per top-level declaration inside the outermost `agent ... do` block,
and raw gap segments (prelude, blank lines, comments, the closing `end`)
between them. Rendering concatenates the segments, so replacing one
declaration leaves every other byte untouched.

Boundaries come from a small tokenizer that tracks string literals,
heredocs, comments, brackets and `do`/`end` nesting, not from pattern
matching over the raw text.
"""

from __future__ import annotations

import re
import textwrap
from dataclasses import dataclass, field

from aictl.exceptions import TaskNotFoundError
from aictl.types import TaskDefinition

# Keywords that always open a block closed by `end`
_OPENERS = {"do", "def", "class", "module", "begin", "case"}
# Keywords that open a block only in statement position (not as modifiers)
_CONDITIONAL_OPENERS = {"if", "unless", "while", "until", "for"}
_LOOP_KEYWORDS = {"while", "until", "for"}
_BRACKETS_OPEN = "([{"
_BRACKETS_CLOSE = ")]}"
_STATEMENT_START_CHARS = "=([{,|&!;"
_CONTINUATION_SUFFIXES = (",", "\\", "&&", "||", "+", "*", "=", "=>", "->", ".", ":")

_HEREDOC_RE = re.compile(r"<<[~-]?(['\"]?)([A-Z_][A-Z0-9_]*)\1")
_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*[?!]?")
_TASK_NAME_RE = re.compile(r"""^\s*task\s*\(?\s*(?::(\w+)|(['"])(\w+)\2)""")
_DO_BLOCK_RE = re.compile(r"\bdo\b\s*(\|[^|]*\|)?\s*(#.*)?$", re.MULTILINE)
_STRING_VALUE_RE = r"""{key}:\s*(['"])(.*?)(?<!\\)\1"""
_HASH_VALUE_RE = r"{key}:\s*\{{([^}}]*)\}}"
_PAIR_RE = re.compile(r"""(\w+):\s*(['"])([^'"]*)\2""")


@dataclass
class _Line:
    text: str
    start_depth: int
    end_depth: int
    literal_start: bool  # begins inside a string, heredoc or =begin block
    first_word: str
    continues: bool


@dataclass
class Segment:
    """A contiguous slice of source. Declarations have a keyword."""

    text: str
    keyword: str = ""
    name: str = ""

    @property
    def is_declaration(self) -> bool:
        return bool(self.keyword)

    @property
    def indent(self) -> str:
        first = self.text.splitlines()[0] if self.text else ""
        return first[: len(first) - len(first.lstrip())]


@dataclass
class _ScanState:
    depth: int = 0
    quote: str = ""
    interpolation: int = 0
    heredocs: list[str] = field(default_factory=list)
    heredoc: str = ""
    heredoc_continues: bool = False
    block_comment: bool = False
    continues: bool = False


def _scan_line(line: str, state: _ScanState) -> _Line:
    """Advance the tokenizer over one physical line."""
    start_depth = state.depth
    literal_start = bool(state.quote or state.heredoc or state.block_comment)
    body = line.rstrip("\r\n")

    if state.block_comment:
        if body.startswith("=end"):
            state.block_comment = False
        return _Line(line, start_depth, state.depth, True, "", state.continues)
    if state.heredoc:
        if body.strip() == state.heredoc:
            state.heredoc = state.heredocs.pop(0) if state.heredocs else ""
            state.continues = bool(state.heredoc) or state.heredoc_continues
        return _Line(line, start_depth, state.depth, True, "", state.continues)
    if not state.quote and body.startswith("=begin"):
        state.block_comment = True
        return _Line(line, start_depth, state.depth, True, "", state.continues)

    first_word = ""
    last_significant = ""
    pending_loop = False
    i, n = 0, len(body)
    comment_at = n
    while i < n:
        ch = body[i]
        if state.quote:
            if ch == "\\":
                i += 2
                continue
            if state.quote == '"' and body.startswith("#{", i):
                state.interpolation += 1
                i += 2
                continue
            if state.interpolation and ch == "}":
                state.interpolation -= 1
            elif not state.interpolation and ch == state.quote:
                state.quote = ""
                last_significant = ch
            i += 1
            continue

        if ch == "#":
            comment_at = i
            break
        if ch in "'\"`":
            state.quote = ch
            first_word = first_word or ch
            i += 1
            continue
        if ch == "<" and body.startswith("<<", i):
            heredoc = _HEREDOC_RE.match(body, i)
            if heredoc:
                state.heredocs.append(heredoc.group(2))
                last_significant = "x"
                i = heredoc.end()
                continue
        if ch in _BRACKETS_OPEN:
            state.depth += 1
        elif ch in _BRACKETS_CLOSE:
            state.depth -= 1
        elif ch.isalpha() or ch == "_":
            match = _WORD_RE.match(body, i)
            word = match.group(0)
            prev = body[:i].rstrip()[-1:]
            nxt = body[match.end():match.end() + 2]
            is_label = nxt[:1] == ":" and nxt != "::"
            is_member = prev in (".", ":")
            if not (is_label or is_member):
                if not first_word:
                    first_word = word
                statement_position = not last_significant or last_significant in _STATEMENT_START_CHARS
                if word == "end":
                    state.depth -= 1
                elif word == "do":
                    if pending_loop:
                        pending_loop = False
                    else:
                        state.depth += 1
                elif word in _OPENERS:
                    state.depth += 1
                elif word in _CONDITIONAL_OPENERS and statement_position:
                    state.depth += 1
                    pending_loop = word in _LOOP_KEYWORDS
            last_significant = word[-1]
            i = match.end()
            continue
        if not ch.isspace():
            last_significant = ch
            first_word = first_word or ch
        i += 1

    code = body[:comment_at].rstrip()
    if state.quote:
        continues = True
    elif not code.strip():
        # blank and comment-only lines do not end a statement
        continues = state.continues
    else:
        continues = code.endswith(_CONTINUATION_SUFFIXES)

    if state.heredocs and not state.quote:
        state.heredoc = state.heredocs.pop(0)
        state.heredoc_continues = continues
        continues = True

    state.continues = continues
    return _Line(line, start_depth, state.depth, literal_start, first_word, continues)


def _scan(code: str) -> list[_Line]:
    state = _ScanState()
    return [_scan_line(line, state) for line in code.splitlines(keepends=True)]


def _continues_on_next(lines: list[_Line], index: int) -> bool:
    if index + 1 >= len(lines):
        return False
    nxt = lines[index + 1].text.lstrip()
    return nxt.startswith(".") or nxt.startswith("&.")


def _declaration_name(keyword: str, text: str) -> str:
    if keyword != "task":
        return keyword
    match = _TASK_NAME_RE.match(text)
    if not match:
        return ""
    return match.group(1) or match.group(3) or ""


class AgentSource:
    """Agent code as an ordered list of segments."""

    def __init__(self, segments: list[Segment]) -> None:
        self.segments = segments

    @classmethod
    def parse(cls, code: str) -> AgentSource:
        lines = _scan(code)

        # Scope: the body of the outermost `agent ... do` block if present,
        # otherwise the whole file.
        body_depth, scope_start, scope_end = 0, 0, len(lines)
        for idx, line in enumerate(lines):
            if line.start_depth == 0 and line.first_word == "agent" and line.end_depth > 0:
                body_depth, scope_start = 1, idx + 1
                scope_end = next(
                    (j for j in range(idx + 1, len(lines)) if lines[j].end_depth < 1),
                    len(lines),
                )
                break

        segments: list[Segment] = []
        gap: list[str] = [line.text for line in lines[:scope_start]]

        def flush_gap() -> None:
            if gap:
                segments.append(Segment(text="".join(gap)))
                gap.clear()

        idx = scope_start
        while idx < scope_end:
            line = lines[idx]
            starts_statement = (
                line.start_depth == body_depth
                and not line.literal_start
                and line.first_word
                and _WORD_RE.fullmatch(line.first_word)
            )
            if not starts_statement:
                gap.append(line.text)
                idx += 1
                continue

            end = idx
            while end < scope_end - 1 and (
                lines[end].end_depth > body_depth
                or lines[end].continues
                or _continues_on_next(lines, end)
            ):
                end += 1
            text = "".join(item.text for item in lines[idx:end + 1])
            flush_gap()
            keyword = line.first_word
            segments.append(
                Segment(text=text, keyword=keyword, name=_declaration_name(keyword, text))
            )
            idx = end + 1

        gap.extend(line.text for line in lines[scope_end:])
        flush_gap()
        return cls(segments)

    def render(self) -> str:
        return "".join(segment.text for segment in self.segments)

    @property
    def declarations(self) -> list[Segment]:
        return [s for s in self.segments if s.is_declaration]

    def task_names(self) -> list[str]:
        return [s.name for s in self.declarations if s.keyword == "task" and s.name]

    def find_task(self, name: str) -> Segment:
        for segment in self.declarations:
            if segment.keyword == "task" and segment.name == name:
                return segment
        raise TaskNotFoundError(name)

    def replace_task(self, name: str, new_text: str) -> AgentSource:
        """Return a new source with one task declaration swapped out."""
        target = self.find_task(name)
        if target.text.endswith("\n") and not new_text.endswith("\n"):
            new_text += "\n"
        segments = [
            Segment(text=new_text, keyword="task", name=name) if s is target else s
            for s in self.segments
        ]
        return AgentSource(segments)

    def task_definitions(self) -> dict[str, TaskDefinition]:
        return {
            s.name: parse_task_definition(s.name, s.text)
            for s in self.declarations
            if s.keyword == "task" and s.name
        }


def parse_task_definition(name: str, text: str) -> TaskDefinition:
    """Pull instructions/inputs/outputs out of one task declaration."""
    instructions = re.search(_STRING_VALUE_RE.format(key="instructions"), text, re.DOTALL)
    return TaskDefinition(
        name=name,
        instructions=instructions.group(2) if instructions else "",
        inputs=_hash_value(text, "inputs"),
        outputs=_hash_value(text, "outputs"),
        neural="instructions:" in text and not _DO_BLOCK_RE.search(text),
    )


def _hash_value(text: str, key: str) -> dict[str, str]:
    match = re.search(_HASH_VALUE_RE.format(key=key), text)
    if not match:
        return {}
    return {k: v for k, _, v in _PAIR_RE.findall(match.group(1))}


def _format_hash(values: dict[str, str]) -> str:
    if not values:
        return "{}"
    pairs = ", ".join(f"{k}: '{v}'" for k, v in values.items())
    return "{ " + pairs + " }"


def _indent_block(text: str, indent: str) -> str:
    return "".join(
        f"{indent}{line}" if line.strip() else line
        for line in text.splitlines(keepends=True)
    )


def format_neural_task(definition: TaskDefinition) -> str:
    """Render a task as its instruction-only (neural) declaration."""
    return (
        f"task :{definition.name},\n"
        f'  instructions: "{definition.instructions}",\n'
        f"  inputs: {_format_hash(definition.inputs)},\n"
        f"  outputs: {_format_hash(definition.outputs)}\n"
    )


def build_task_code(definition: TaskDefinition, body: str, indent: str = "") -> str:
    """Render a symbolic task: typed header plus indented body.

    If `body` is already a complete declaration of this task it is only
    re-indented.
    """
    body = textwrap.dedent(body).strip("\n")
    if _TASK_NAME_RE.match(body) and _declaration_name("task", body) == definition.name:
        return _indent_block(body + "\n", indent)

    header = (
        f"task :{definition.name},\n"
        f"  inputs: {_format_hash(definition.inputs)},\n"
        f"  outputs: {_format_hash(definition.outputs)} do |inputs|\n"
    )
    return _indent_block(header + _indent_block(body + "\n", "  ") + "end\n", indent)


def splice_task(code: str, definition: TaskDefinition, body: str) -> str:
    """Replace task `definition.name` in `code` with new symbolic code.

    Raises TaskNotFoundError, leaving nothing modified, if the task is
    not declared in `code`.
    """
    source = AgentSource.parse(code)
    target = source.find_task(definition.name)
    return source.replace_task(
        definition.name, build_task_code(definition, body, indent=target.indent),
    ).render()
