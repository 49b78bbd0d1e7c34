import io

import pytest

from modelkit import output
from modelkit.output import CommandFailed, LogLevel, ProgressLogger


@pytest.fixture(autouse=True)
def reset_state(monkeypatch):
    monkeypatch.setattr(output, "_log_level", LogLevel.INFO)
    monkeypatch.setattr(output, "_stdout", io.StringIO())
    monkeypatch.setattr(output, "_stderr", io.StringIO())
    monkeypatch.setattr(output, "_progress_enabled", False)
    monkeypatch.setattr(output, "_progress_style", "plain")


def _streams():
    out, err = io.StringIO(), io.StringIO()
    output.set_out(out)
    output.set_err(err)
    return out, err


@pytest.mark.parametrize(
    "value, expected",
    [
        (0, "0 B"),
        (500, "500 B"),
        ((1 << 10) - 1, "1023 B"),
        (1 << 10, "1.0 KiB"),
        (4608, "4.5 KiB"),
        ((1 << 20) - 1, "1023.9 KiB"),
        (1 << 20, "1.0 MiB"),
        (6815744, "6.5 MiB"),
        ((1 << 30) - 1, "1023.9 MiB"),
        (1 << 30, "1.0 GiB"),
        (1 << 40, "1.0 TiB"),
        (1 << 50, "1.0 PiB"),
        (500 * (1 << 50), "500.0 PiB"),
        (1 << 60, "1024.0 PiB"),
    ],
)
def test_format_bytes(value, expected):
    assert output.format_bytes(value) == expected


def test_should_print_ordering():
    assert LogLevel.INFO.should_print(LogLevel.ERROR)
    assert LogLevel.INFO.should_print(LogLevel.INFO)
    assert not LogLevel.INFO.should_print(LogLevel.DEBUG)
    assert LogLevel.TRACE.should_print(LogLevel.TRACE)


def test_set_log_level_from_string():
    out = io.StringIO()
    output.set_out(out)
    output.set_log_level_from_string("debug")
    output.debug("visible")
    assert out.getvalue().endswith("Visible\n")


def test_set_log_level_from_string_invalid():
    with pytest.raises(ValueError, match="invalid log level 'loud'"):
        output.set_log_level_from_string("loud")


def test_info_at_info_level_has_no_prefix():
    out = io.StringIO()
    err = io.StringIO()
    output.set_out(out)
    output.set_err(err)
    output.info("hello %s", "world")
    assert out.getvalue() == "Hello world\n"
    assert err.getvalue() == ""


def test_warning_goes_to_stderr():
    out = io.StringIO()
    err = io.StringIO()
    output.set_out(out)
    output.set_err(err)
    output.log(LogLevel.WARN, "careful")
    assert "[WARN ]" in err.getvalue()
    assert err.getvalue().endswith("Careful\n")
    assert out.getvalue() == ""


def test_debug_suppressed_at_info():
    out = io.StringIO()
    output.set_out(out)
    output.debug("hidden")
    assert out.getvalue() == ""


def test_debug_printed_with_prefix():
    out = io.StringIO()
    output.set_out(out)
    output.set_log_level(LogLevel.DEBUG)
    output.debug("details %d", 5)
    assert "[DEBUG]" in out.getvalue()
    assert out.getvalue().endswith("Details 5\n")


def test_existing_newline_not_doubled():
    out = io.StringIO()
    output.set_out(out)
    output.info("line\n")
    assert out.getvalue() == "Line\n"


def test_safe_log_respects_progress(monkeypatch):
    out = io.StringIO()
    output.set_out(out)
    monkeypatch.setattr(output, "_progress_enabled", True)
    output.safe_log(LogLevel.INFO, "quiet")
    assert out.getvalue() == ""
    monkeypatch.setattr(output, "_progress_enabled", False)
    output.safe_log(LogLevel.INFO, "loud")
    assert out.getvalue() == "Loud\n"


def test_fatal_prints_and_raises():
    err = io.StringIO()
    output.set_err(err)
    with pytest.raises(CommandFailed, match="failed to run"):
        output.fatal("broken %s", "thing")
    assert err.getvalue().endswith("Broken thing\n")
    assert "[ERROR]" in err.getvalue()


def test_prefix_depends_on_level():
    assert LogLevel.INFO.prefix() == ""
    assert LogLevel.DEBUG.prefix() == ""
    assert "[ERROR]" in LogLevel.ERROR.prefix()
    output.set_log_level(LogLevel.TRACE)
    assert "[TRACE]" in LogLevel.TRACE.prefix()
    assert "[INFO ]" in LogLevel.INFO.prefix()


def test_set_progress_bars_none_disables():
    output.set_progress_bars("none")
    assert output.progress_enabled() is False


def test_progress_logger_debug_and_log():
    buf = io.StringIO()
    logger = ProgressLogger(buf)
    output.set_log_level(LogLevel.DEBUG)
    logger.debug("step %d", 1)
    logger.log(LogLevel.ERROR, "bad")
    lines = buf.getvalue().splitlines()
    assert lines[0].endswith("Step 1")
    assert lines[1].endswith("Bad")


def test_progress_logger_respects_level():
    buf = io.StringIO()
    logger = ProgressLogger(buf)
    logger.debug("nope")
    logger.log(LogLevel.TRACE, "nope")
    logger.info("nope")
    assert buf.getvalue() == ""


def test_progress_logger_defaults_to_stdout():
    out = io.StringIO()
    output.set_out(out)
    ProgressLogger().log(LogLevel.INFO, "shown")
    assert out.getvalue() == "Shown\n"


def test_progress_logger_wait_calls_back():
    calls = []
    ProgressLogger(io.StringIO(), lambda: calls.append(True)).wait()
    assert calls == [True]