import pytest

from duoc import main, Source, Diag, ErrorSink, parse_source, compile_source, CompileError

BAD = "fun f(): int {\n    return g(1);\n}\n"


@pytest.fixture
def bad_file(tmp_path):
    path = tmp_path / "bad.duo"
    path.write_text(BAD)
    return path


@pytest.fixture
def good_file(tmp_path):
    path = tmp_path / "twice.duo"
    path.write_text("fun twice(x: double): double {\n    return x * 2;\n}\n")
    return path


def test_diag_format_without_color():
    src = Source.from_string("var x;\n", "t.duo")
    text = Diag("error", "boom", src, 4, hint="try again").format(use_color=False)
    assert text.splitlines() == [
        "error: boom",
        " --> t.duo:1:5",
        "  |",
        "1 | var x;",
        "  |     ^",
        "  | help: try again",
    ]


def test_line_col():
    src = Source.from_string("ab\ncd\n\nef")
    assert src.line_col(0) == (1, 1)
    assert src.line_col(4) == (2, 2)
    assert src.line_col(7) == (4, 1)


def test_error_sink_collects(capsys):
    es = ErrorSink(use_color=False)
    assert es.ok()
    es.error("bad thing", Source.from_string("x"), 0)
    assert not es.ok()
    es.dump()
    assert "error: bad thing" in capsys.readouterr().out


def test_parse_source_reports_first_error():
    with pytest.raises(CompileError) as exc:
        parse_source(Source.from_string("fun f(): int { return a + b; }"))
    assert "'a'" in exc.value.msg


def test_compile_source_names_module():
    module = compile_source("fun f(): int { return 1; }", "dir/prog.duo")
    assert module.name == "prog.duo"


def test_default_example_prints_ir(capsys):
    assert main([]) == 0
    assert 'define i32 @"fib"' in capsys.readouterr().out


def test_compile_error_exit_code_and_diagnostic(bad_file, capsys):
    assert main([str(bad_file), "--no-color"]) == 1
    out = capsys.readouterr().out
    assert "error: cannot call unknown function 'g'" in out
    assert "bad.duo:2:12" in out
    assert "help: functions must be defined above their callers" in out


def test_colored_diagnostic(bad_file, capsys):
    assert main([str(bad_file)]) == 1
    assert "\033[31m" in capsys.readouterr().out


def test_write_ir_file(good_file, tmp_path, capsys):
    out = tmp_path / "twice.ll"
    assert main([str(good_file), "-o", str(out)]) == 0
    assert 'define double @"twice"' in out.read_text()
    assert f"Wrote {out}" in capsys.readouterr().out


def test_write_object_file(tmp_path, capsys):
    out = tmp_path / "fib.o"
    assert main(["--obj", str(out)]) == 0
    assert out.stat().st_size > 0


def test_run_function(capsys):
    assert main(["--run", "fib", "10"]) == 0
    assert capsys.readouterr().out.strip() == "89"


def test_run_with_double_argument(good_file, capsys):
    assert main([str(good_file), "--run", "twice", "1.25"]) == 0
    assert capsys.readouterr().out.strip() == "2.5"


@pytest.mark.parametrize("argv", [
    ["--bogus"],
    ["-o"],
    ["--run"],
    ["--run", "nope"],
    ["--run", "fib"],
    ["a.duo", "b.duo"],
])
def test_bad_usage(argv, capsys):
    assert main(argv) == 2
    assert "error:" in capsys.readouterr().out


def test_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / "missing.duo")]) == 2
    assert "cannot read" in capsys.readouterr().out


def test_help(capsys):
    assert main(["--help"]) == 0
    assert capsys.readouterr().out.startswith("usage: duoc")
