# Commands_test.py
import io
import os
import shutil
import signal
import stat
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

import Interrupt
import Repl
import commands
from log_writer import LogWriter
from outcome import AbnormalTermination, Cancelled, ExecutionCompleted, LaunchFailure
from process_subsystem import ScriptSupervisor
from script_catalog import InvalidSelection, ScriptCatalog, ScriptDescriptor


class TestRendering(unittest.TestCase):
    def test_progress_bar(self):
        self.assertEqual(commands.render_progress(0, color=False), "Progress: [" + " " * 30 + "]   0%")
        self.assertEqual(commands.render_progress(50, color=False), "Progress: [" + "█" * 15 + " " * 15 + "]  50%")
        self.assertEqual(commands.render_progress(140, color=False), "Progress: [" + "█" * 30 + "] 100%")

    def test_pass(self):
        text = commands.render_result(ExecutionCompleted(0), color=False)
        self.assertEqual(text, "Result: PASS Script executed successfully!")

    def test_fail_with_log(self):
        text = commands.render_result(ExecutionCompleted(2), "/tmp/x.log", color=False)
        self.assertIn("FAIL Script failed with error code 2", text)
        self.assertIn("Detailed log saved to: /tmp/x.log", text)
        self.assertIn("View log with: cat /tmp/x.log", text)

    def test_fail_without_log_shows_no_path(self):
        text = commands.render_result(ExecutionCompleted(2), None, color=False)
        self.assertNotIn("log", text)

    def test_abnormal_and_launch_details(self):
        self.assertIn("(signal 9)", commands.render_result(AbnormalTermination(signal=9), color=False))
        self.assertIn("Could not start script: gone",
                      commands.render_result(LaunchFailure(reason="gone"), color=False))

    def test_cancelled_is_a_warning(self):
        self.assertIn("WARNING", commands.render_result(Cancelled(), color=False))

    def test_shell_exit_code(self):
        self.assertEqual(commands.shell_exit_code(ExecutionCompleted(3)), 3)
        self.assertEqual(commands.shell_exit_code(AbnormalTermination(signal=9)), 1)
        self.assertEqual(commands.shell_exit_code(Cancelled()), 1)


class TestSelection(unittest.TestCase):
    def setUp(self):
        self.catalog = ScriptCatalog([
            ScriptDescriptor("/s/a.sh", "Alpha"),
            ScriptDescriptor("/s/b.sh", "Beta"),
        ])

    def test_numbers_are_one_based(self):
        self.assertEqual(commands.resolve_selection(self.catalog, "2").name, "Beta")

    def test_by_name(self):
        self.assertEqual(commands.resolve_selection(self.catalog, " Alpha ").path, "/s/a.sh")

    def test_invalid(self):
        for text in ("", "0", "3", "Gamma"):
            with self.assertRaises(InvalidSelection):
                commands.resolve_selection(self.catalog, text)

    def test_menu_lists_scripts(self):
        text = commands.render_menu(self.catalog, color=False)
        self.assertIn("1. Alpha - No description available", text)
        self.assertIn("2. Beta", text)

    def test_undecodable_names_are_printable(self):
        catalog = ScriptCatalog([ScriptDescriptor(os.fsdecode(b"/s/bad\xff.sh"), os.fsdecode(b"Bad\xff"))])
        text = commands.render_menu(catalog, color=False)
        self.assertIn("1. Bad\\udcff", text)
        text.encode("utf-8")


class TestRunAndLogs(unittest.TestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp(prefix="commands_"))
        self.scripts = self.tmp / "scripts"
        self.logs = self.tmp / "logs"
        self.scripts.mkdir()
        self._script("greet.sh", "# Says hello\necho hello \"$1\"\necho 60 > /dev/fd/$PROGRESS_FD\nexit 0\n")
        self._script("broken.sh", "# Always breaks\necho broken\nexit 4\n")
        self.saved_handlers = {s: signal.getsignal(s) for s in (signal.SIGTERM, signal.SIGHUP)}

    def tearDown(self):
        for s, h in self.saved_handlers.items():
            signal.signal(s, h)
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _script(self, name, body):
        path = self.scripts / name
        path.write_text("#!/bin/sh\n" + body)
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR | stat.S_IXUSR)

    def test_run_script_prints_progress_and_result(self):
        sup = ScriptSupervisor(LogWriter(self.logs), poll_interval=0.01)
        descriptor = ScriptCatalog.discover(self.scripts).find("Greet")
        out = io.StringIO()
        outcome, log_path = commands.run_script(sup, descriptor, "world", out=out, color=False)
        self.assertEqual(outcome.exit_code, 0)
        self.assertIsNone(log_path)
        text = out.getvalue()
        self.assertIn("Executing: Greet", text)
        self.assertIn("\rProgress: [" + " " * 30 + "]   0%", text)
        self.assertIn("] 100%", text)
        self.assertIn("Result: PASS", text)
        self.assertEqual(sup.last_session.output.getvalue(), b"hello world\n")

    def test_main_run_mode_returns_script_code(self):
        out = io.StringIO()
        with redirect_stdout(out):
            code = Repl.main(["--scripts-dir", str(self.scripts), "--log-dir", str(self.logs),
                              "--poll-interval", "0.01", "--run", "Broken"])
        self.assertEqual(code, 4)
        self.assertIn("Detailed log saved to:", out.getvalue())
        self.assertEqual(len(commands.list_logs(self.logs)), 1)

    def test_main_run_mode_invalid_selection(self):
        with redirect_stdout(io.StringIO()):
            code = Repl.main(["--scripts-dir", str(self.scripts), "--log-dir", str(self.logs), "--run", "9"])
        self.assertEqual(code, 1)

    def test_main_list_mode(self):
        out = io.StringIO()
        with redirect_stdout(out):
            code = Repl.main(["--scripts-dir", str(self.scripts), "--list"])
        self.assertEqual(code, 0)
        self.assertIn("Broken - Always breaks", out.getvalue())
        self.assertIn("Greet - Says hello", out.getvalue())

    def test_main_rejects_bad_config(self):
        code = Repl.main(["--scripts-dir", str(self.scripts), "--poll-interval", "0", "--list"])
        self.assertEqual(code, Repl.EXIT_SETUP_FAILURE)

    def test_list_logs_newest_first(self):
        self.logs.mkdir()
        for name in ("20250101_000000_A.log", "20250301_000000_B.log", "notes.txt"):
            (self.logs / name).write_text("x")
        names = [p.name for p in commands.list_logs(self.logs)]
        self.assertEqual(names, ["20250301_000000_B.log", "20250101_000000_A.log"])

    def test_list_logs_missing_dir(self):
        self.assertEqual(commands.list_logs(self.tmp / "nowhere"), [])


class FakeSession:
    """Stands in for prompt_toolkit's PromptSession with scripted answers."""

    def __init__(self, answers):
        self.answers = list(answers)

    def prompt(self, message):
        if not self.answers:
            raise EOFError
        return self.answers.pop(0)


class TestInteractive(unittest.TestCase):
    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp(prefix="repl_"))
        path = self.tmp / "fail.sh"
        path.write_text("#!/bin/sh\n# Fails\necho \"arg=$1\"\nexit 6\n")
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR | stat.S_IXUSR)
        self.catalog = ScriptCatalog.discover(self.tmp)
        self.cfg = type("Cfg", (), {"log_dir": self.tmp / "logs", "history_file": None})()
        self.sup = ScriptSupervisor(LogWriter(self.cfg.log_dir), poll_interval=0.01)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_select_run_and_quit(self):
        out = io.StringIO()
        session = FakeSession(["7", "1", "abc", "l", "q"])
        with redirect_stdout(out):
            code = Repl.interactive(self.catalog, self.sup, self.cfg, Interrupt.ShutdownFlag(), session=session)
        self.assertEqual(code, 0)
        text = out.getvalue()
        self.assertIn("Invalid selection", text)
        self.assertIn("Script failed with error code 6", text)
        self.assertIn("Goodbye!", text)
        self.assertEqual(self.sup.last_session.output.getvalue(), b"arg=abc\n")

    def test_shutdown_flag_stops_loop(self):
        flag = Interrupt.ShutdownFlag()
        flag.request(signal.SIGTERM)
        with redirect_stdout(io.StringIO()):
            Repl.interactive(self.catalog, self.sup, self.cfg, flag, session=FakeSession(["1"]))
        self.assertIsNone(self.sup.last_session)


class InterruptedSupervisor:
    """Raises KeyboardInterrupt from execute(), as a late SIGTERM would."""

    last_log_path = None

    def __init__(self, flag=None):
        self.flag = flag
        self.calls = 0

    def execute(self, request, on_progress=None):
        self.calls += 1
        if self.flag is not None:
            self.flag.request(signal.SIGTERM)
        raise KeyboardInterrupt


class TestLateInterrupt(unittest.TestCase):
    def setUp(self):
        self.catalog = ScriptCatalog([ScriptDescriptor("/s/a.sh", "Alpha")])
        self.cfg = type("Cfg", (), {"log_dir": Path("/nonexistent/logs"), "history_file": None})()

    def test_interactive_survives_interrupt_and_keeps_going(self):
        sup = InterruptedSupervisor()
        out = io.StringIO()
        with redirect_stdout(out):
            code = Repl.interactive(self.catalog, sup, self.cfg, Interrupt.ShutdownFlag(),
                                    session=FakeSession(["1", "", "1", "", "q"]))
        self.assertEqual(code, 0)
        self.assertEqual(sup.calls, 2)
        self.assertIn("Interrupted.", out.getvalue())
        self.assertIn("Goodbye!", out.getvalue())

    def test_interactive_stops_when_shutdown_requested(self):
        flag = Interrupt.ShutdownFlag()
        sup = InterruptedSupervisor(flag)
        with redirect_stdout(io.StringIO()):
            code = Repl.interactive(self.catalog, sup, self.cfg, flag, session=FakeSession(["1", "", "1", ""]))
        self.assertEqual(code, 0)
        self.assertEqual(sup.calls, 1)

    def test_run_mode_reports_interrupt(self):
        out = io.StringIO()
        code = Repl.run_mode(self.catalog, InterruptedSupervisor(), "1", out=out)
        self.assertEqual(code, Repl.EXIT_INTERRUPTED)
        self.assertIn("Interrupted.", out.getvalue())


class TestInterrupt(unittest.TestCase):
    def test_handler_sets_flag_and_interrupts(self):
        flag = Interrupt.ShutdownFlag()
        handler = Interrupt.make_handler(flag)
        with self.assertRaises(KeyboardInterrupt):
            handler(signal.SIGTERM, None)
        self.assertTrue(flag.requested)
        self.assertEqual(flag.signum, signal.SIGTERM)


if __name__ == "__main__":
    unittest.main(verbosity=2)
