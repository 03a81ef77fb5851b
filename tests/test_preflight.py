"""Tests for code preflight validation."""

from recanon.codes import PreflightCode
from recanon.kernel.preflight import strip_comments, validate_code
from recanon.kernel.program import backtest_program, claim_program


def test_live_create_canvas_rejected_with_line_number():
    code = "function setup() {\n  createCanvas(500,500);\n}\n"
    result = validate_code(code)
    assert result.valid is False
    assert len(result.errors) == 1
    error = result.errors[0]
    assert error.code == PreflightCode.CANVAS_OVERRIDE.value
    assert error.line_number == 2
    assert error.line_content == "createCanvas(500,500);"


def test_create_canvas_in_block_comment_accepted():
    code = "/* createCanvas(500,500) */\nfunction setup() {}\n"
    result = validate_code(code)
    assert result.valid is True
    assert result.errors == []


def test_create_canvas_in_line_comment_accepted():
    result = validate_code("// createCanvas(500, 500);\nbackground(0);")
    assert result.valid


def test_multiline_block_comment_keeps_line_numbers():
    code = "/*\n createCanvas(1,1)\n*/\nfunction draw() {\n  createCanvas(2, 2);\n}"
    result = validate_code(code)
    assert not result.valid
    assert [e.line_number for e in result.errors] == [5]


def test_every_live_occurrence_reported():
    code = "createCanvas(1,1);\nfoo();\ncreateCanvas (3,3);"
    result = validate_code(code)
    assert [e.line_number for e in result.errors] == [1, 3]


def test_identifier_containing_name_not_flagged():
    result = validate_code("myCreateCanvas(1,1);\ncreateCanvasLater();")
    assert result.valid


def test_empty_code_rejected():
    for code in ("", "   \n\t"):
        result = validate_code(code)
        assert not result.valid
        assert result.errors[0].code == PreflightCode.CODE_EMPTY.value


def test_ambient_seed_warns_but_does_not_block():
    result = validate_code("function draw() {\n  randomSeed(SEED);\n}")
    assert result.valid
    assert len(result.warnings) == 1
    assert result.warnings[0].code == PreflightCode.AMBIENT_SEED.value
    assert result.warnings[0].line_number == 2


def test_seed_substring_not_flagged():
    result = validate_code("const SEEDLING = 1;\nconst mySEED = 2;")
    assert result.warnings == []


def test_string_literal_limitation_is_kept():
    # Text matching, not parsing: a call name inside a string still counts.
    result = validate_code('const s = "createCanvas(1,1)";')
    assert not result.valid


def test_reference_programs_pass_cleanly():
    for program in (backtest_program(), claim_program()):
        result = validate_code(program)
        assert result.valid
        assert result.warnings == []


def test_strip_comments_preserves_newlines():
    code = "a\n/* x\ny */\nb // c"
    assert strip_comments(code).split("\n") == ["a", "", "", "b "]
