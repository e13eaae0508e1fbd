"""Tests for agent source parsing and task splicing."""

import pytest

from aictl.code.source import (
    AgentSource,
    build_task_code,
    format_neural_task,
    parse_task_definition,
    splice_task,
)
from aictl.exceptions import TaskNotFoundError
from aictl.types import TaskDefinition

from tests.conftest import BILLING_BOT_CODE, SUMMARIZE_BODY

TRICKY_CODE = '''agent "tricky" do
  task :a,
    instructions: <<~TEXT,
      Read the file and then end
      task :fake,
    TEXT
    inputs: {},
    outputs: {}

  # task :commented do
  task :b,
    instructions: "Say \\"end\\" # not a comment",
    inputs: {},
    outputs: {}

  task :calc,
    inputs: { x: 'integer' },
    outputs: { total: 'integer' } do |inputs|
    total = 0
    total += 1 if inputs[:x]
    while total < 3 do
      total += 1
    end
    [1, 2].each do |i|
      next unless i
    end
    { total: total }
  end
end
'''


# ── Parsing ──────────────────────────────────────────────────────

def test_parse_finds_declarations_in_order():
    source = AgentSource.parse(BILLING_BOT_CODE)
    assert [s.keyword for s in source.declarations] == ["description", "task", "task", "task", "main"]
    assert source.task_names() == ["fetch", "summarize", "notify"]


def test_render_round_trips_exactly():
    for code in (BILLING_BOT_CODE, TRICKY_CODE, "", "puts 'hi'"):
        assert AgentSource.parse(code).render() == code


def test_task_segment_text():
    segment = AgentSource.parse(BILLING_BOT_CODE).find_task("notify")
    assert segment.text.startswith("  task :notify,\n")
    assert segment.text.endswith("  end\n")
    assert segment.indent == "  "


def test_heredocs_comments_and_strings_do_not_confuse_boundaries():
    source = AgentSource.parse(TRICKY_CODE)
    assert source.task_names() == ["a", "b", "calc"]
    assert "TEXT\n" in source.find_task("a").text
    assert source.find_task("calc").text.rstrip().endswith("end")


def test_modifiers_and_loops_balance():
    segment = AgentSource.parse(TRICKY_CODE).find_task("calc")
    assert segment.text.count("\n") == 13


def test_top_level_tasks_without_agent_block():
    code = 'task :a,\n  instructions: "x"\n\ntask :b do |inputs|\n  {}\nend\n'
    source = AgentSource.parse(code)
    assert source.task_names() == ["a", "b"]
    assert source.render() == code


def test_string_task_names():
    source = AgentSource.parse('agent "x" do\n  task "quoted", instructions: "y"\nend\n')
    assert source.task_names() == ["quoted"]


# ── Task definitions ─────────────────────────────────────────────

def test_task_definitions():
    defs = AgentSource.parse(BILLING_BOT_CODE).task_definitions()
    assert defs["summarize"] == TaskDefinition(
        name="summarize",
        instructions="Summarize the invoice in one sentence",
        inputs={"invoice": "hash"},
        outputs={"summary": "string"},
        neural=True,
    )
    assert defs["notify"].neural is False


def test_parse_task_definition_without_hashes():
    definition = parse_task_definition("x", 'task :x, instructions: "Do it"')
    assert definition.inputs == {}
    assert definition.outputs == {}
    assert definition.neural


def test_format_neural_task():
    text = format_neural_task(TaskDefinition(
        name="s", instructions="Go", inputs={"a": "string"}, outputs={},
    ))
    assert text == "task :s,\n  instructions: \"Go\",\n  inputs: { a: 'string' },\n  outputs: {}\n"


# ── Splicing ─────────────────────────────────────────────────────

def _summarize_definition():
    return AgentSource.parse(BILLING_BOT_CODE).task_definitions()["summarize"]


def test_splice_preserves_every_byte_outside_the_task():
    original = AgentSource.parse(BILLING_BOT_CODE).find_task("summarize").text
    start = BILLING_BOT_CODE.index(original)
    end = start + len(original)

    result = splice_task(BILLING_BOT_CODE, _summarize_definition(), SUMMARIZE_BODY)

    assert result.startswith(BILLING_BOT_CODE[:start])
    assert result.endswith(BILLING_BOT_CODE[end:])
    replaced = result[start:len(result) - len(BILLING_BOT_CODE[end:])]
    assert replaced == build_task_code(_summarize_definition(), SUMMARIZE_BODY, indent="  ")


def test_spliced_task_is_symbolic_and_indented():
    result = splice_task(BILLING_BOT_CODE, _summarize_definition(), SUMMARIZE_BODY)
    assert (
        "  task :summarize,\n"
        "    inputs: { invoice: 'hash' },\n"
        "    outputs: { summary: 'string' } do |inputs|\n"
        "    total = inputs[:invoice][:total]\n"
        '    { summary: "Invoice total: #{total}" }\n'
        "  end\n"
    ) in result
    reparsed = AgentSource.parse(result)
    assert reparsed.task_names() == ["fetch", "summarize", "notify"]
    assert reparsed.task_definitions()["summarize"].neural is False


def test_splice_accepts_full_declaration():
    body = "task :summarize do |inputs|\n  { summary: 'x' }\nend"
    result = splice_task(BILLING_BOT_CODE, _summarize_definition(), body)
    assert "  task :summarize do |inputs|\n    { summary: 'x' }\n  end\n" in result


def test_splice_inside_tricky_source():
    definition = TaskDefinition(name="b", outputs={"said": "string"})
    result = splice_task(TRICKY_CODE, definition, "{ said: 'end' }")
    untouched = AgentSource.parse(TRICKY_CODE)
    assert untouched.find_task("a").text in result
    assert untouched.find_task("calc").text in result
    assert 'Say \\"end\\"' not in result


def test_splice_missing_task_raises():
    with pytest.raises(TaskNotFoundError, match="task not found"):
        splice_task(BILLING_BOT_CODE, TaskDefinition(name="missing"), "{}")


def test_replace_task_returns_new_source():
    source = AgentSource.parse(BILLING_BOT_CODE)
    replaced = source.replace_task("fetch", "  task :fetch do |inputs|\n  end")
    assert source.render() == BILLING_BOT_CODE
    assert replaced.render() != BILLING_BOT_CODE
    assert replaced.render().count("\n") == BILLING_BOT_CODE.count("\n") - 2
