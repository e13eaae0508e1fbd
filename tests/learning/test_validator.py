"""Tests for the denylist safety validator."""

from aictl.learning.validator import DenylistValidator

validator = DenylistValidator()


def test_plain_code_is_safe():
    code = (
        "total = inputs[:invoice][:total]\n"
        "items = inputs[:items].map { |i| i[:price] }\n"
        "{ summary: \"Invoice total: #{total}\", count: items.size }\n"
    )
    assert validator.validate(code) == []


def test_dangerous_calls():
    assert validator.validate("system('ls')") == ["Dangerous method call: system"]
    assert validator.validate("x = eval(inputs[:expr])") == ["Dangerous method call: eval"]
    assert validator.validate("require 'socket'") == ["Dangerous method call: require"]
    assert validator.validate("obj.send(:delete)") == ["Dangerous method call: send"]


def test_dangerous_constants():
    assert validator.validate("File.read('/etc/passwd')") == ["Dangerous constant access: File"]
    assert validator.validate("Process::Status") == ["Dangerous constant access: Process"]


def test_shell_execution():
    assert validator.validate("out = `whoami`") == ["Shell execution via backticks or %x is not allowed"]
    assert validator.validate("%x(ls)")[0].startswith("Shell execution")


def test_strings_and_comments_are_ignored():
    code = (
        "# we never call system here\n"
        "{ note: 'eval File.read is not code', other: \"exec\" }\n"
    )
    assert validator.validate(code) == []


def test_symbols_hash_keys_and_assignments_are_not_calls():
    code = "opts = { load: 1, exec: 2 }\nsend_at = inputs[:send]\nexit_code = 0\n"
    assert validator.validate(code) == []


def test_violations_are_deduplicated():
    assert validator.validate("system('a')\nsystem('b')") == ["Dangerous method call: system"]
