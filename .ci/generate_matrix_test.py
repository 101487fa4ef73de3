"""Tests for generate_matrix.py"""

import contextlib
import io
import os
import pathlib
import subprocess
import sys
import tempfile
import unittest
from unittest import mock

import generate_matrix


class TestGenerateMatrixScript(unittest.TestCase):
    """Test cases for the command line entry point."""

    def setUp(self):
        """Cria um repositório temporário com dois projetos."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)
        self.root = pathlib.Path(self.temp_dir.name)
        for folder in ("project/p1", "project/p2", "project/shared"):
            os.makedirs(self.root / folder)
        (self.root / "project/p2/.depends").write_text("project/shared/**\n", encoding="utf-8")

    def _run(self, stdin, args=(), environ=None):
        """Executa main() e retorna o que foi impresso em stdout."""
        if isinstance(stdin, str):
            stdin = io.StringIO(stdin)
        stdout = io.StringIO()
        with mock.patch.object(sys, "argv", ["generate_matrix.py", *args]), \
                mock.patch.object(sys, "stdin", stdin), \
                mock.patch.dict(os.environ, environ or {}, clear=True), \
                mock.patch.object(generate_matrix, "git_root", return_value=self.root), \
                contextlib.redirect_stdout(stdout):
            generate_matrix.main()
        return stdout.getvalue()

    def _assert_fatal(self, stdin, args=(), environ=None, git_error=None):
        """Verifica que main() registra um erro, sai com 1 e não imprime JSON."""
        if isinstance(stdin, str):
            stdin = io.StringIO(stdin)
        git_root = {"side_effect": git_error} if git_error else {"return_value": self.root}
        stdout = io.StringIO()
        with mock.patch.object(sys, "argv", ["generate_matrix.py", *args]), \
                mock.patch.object(sys, "stdin", stdin), \
                mock.patch.dict(os.environ, environ or {}, clear=True), \
                mock.patch.object(generate_matrix, "git_root", **git_root), \
                contextlib.redirect_stdout(stdout), \
                self.assertLogs(level="ERROR") as logs:
            with self.assertRaises(SystemExit) as context:
                generate_matrix.main()

        self.assertEqual(context.exception.code, 1)
        self.assertEqual(stdout.getvalue(), "")
        return logs.output

    def test_empty_input(self):
        """Test that empty stdin prints the root-only matrix."""
        self.assertEqual(self._run(""), '{"include":[{"project":"."}]}\n')

    def test_blank_lines_only(self):
        """Test that whitespace-only input counts as empty."""
        self.assertEqual(self._run("\n  \n\n"), '{"include":[{"project":"."}]}\n')

    def test_direct_projects(self):
        """Test projects changed directly."""
        output = self._run("project/p1/f.js\n\nproject/p2/f.js\n")
        self.assertEqual(
            output, '{"include":[{"project":"."},{"project":"p1"},{"project":"p2"}]}\n'
        )

    def test_dependency_projects(self):
        """Test a project triggered through its .depends file."""
        output = self._run("project/shared/util.js\n", environ={"IGNORE_LIST": "shared"})
        self.assertEqual(output, '{"include":[{"project":"."},{"project":"p2"}]}\n')

    def test_ignore_list(self):
        """Test IGNORE_LIST from the environment."""
        output = self._run("project/p1/f.js\n", environ={"IGNORE_LIST": "p1"})
        self.assertEqual(output, '{"include":[{"project":"."}]}\n')

    def test_project_root_at_repository_root(self):
        """Test PROJECT_ROOT='.'."""
        output = self._run("project/p1/f.js\nREADME.md\n", environ={"PROJECT_ROOT": "."})
        self.assertEqual(output, '{"include":[{"project":"."},{"project":"project"}]}\n')

    def test_no_root(self):
        """Test the --no-root flag."""
        output = self._run("project/p1/f.js\n", args=["--no-root"])
        self.assertEqual(output, '{"include":[{"project":"p1"}]}\n')

    def test_github_output(self):
        """Test that --github-output appends the matrix to $GITHUB_OUTPUT."""
        output_file = self.root / "github_output"
        output_file.write_text("existing=1\n", encoding="utf-8")

        output = self._run(
            "project/p1/f.js\n",
            args=["--github-output"],
            environ={"GITHUB_OUTPUT": str(output_file)},
        )

        self.assertEqual(
            output_file.read_text(encoding="utf-8"),
            'existing=1\nmatrix={"include":[{"project":"."},{"project":"p1"}]}\n',
        )
        self.assertEqual(output, '{"include":[{"project":"."},{"project":"p1"}]}\n')

    def test_github_output_without_variable(self):
        """Test that --github-output without $GITHUB_OUTPUT still prints."""
        with self.assertLogs(level="WARNING"):
            output = self._run("project/p1/f.js\n", args=["--github-output"])
        self.assertEqual(output, '{"include":[{"project":"."},{"project":"p1"}]}\n')

    def test_git_failure_exits(self):
        """Test that a missing repository root is fatal and prints no JSON."""
        error = subprocess.CalledProcessError(128, ["git", "rev-parse", "--show-toplevel"])
        self._assert_fatal("project/p1/f.js\n", git_error=error)

    def test_undecodable_input_exits(self):
        """Test that stdin which is not UTF-8 is fatal and prints no JSON."""
        stdin = io.TextIOWrapper(io.BytesIO(b"project/\xff/f.js\n"), encoding="utf-8")
        output = self._assert_fatal(stdin)
        self.assertIn("can't decode byte 0xff", output[0])

    def test_unwritable_github_output_exits(self):
        """Test that a bad $GITHUB_OUTPUT path is fatal and prints no JSON."""
        missing_file = self.root / "missing" / "github_output"
        output = self._assert_fatal(
            "project/p1/f.js\n",
            args=["--github-output"],
            environ={"GITHUB_OUTPUT": str(missing_file)},
        )
        self.assertIn("github_output", output[0])

    def test_read_changed_files(self):
        """Test stdin parsing."""
        self.assertEqual(
            generate_matrix.read_changed_files(io.StringIO(" a/b.js \n\n\nc/d.js")),
            ["a/b.js", "c/d.js"],
        )


if __name__ == "__main__":
    unittest.main()
