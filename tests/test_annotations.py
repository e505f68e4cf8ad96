"""Tests for GitHub workflow command output."""

from storage_check import annotations
from storage_check.source import Position, SourceSpan


class TestCommand:
    def test_escapes_message_and_properties(self):
        line = annotations.command("error", "50% done\nnext", title="a: b, c")
        assert line == "::error title=a%3A b%2C c::50%25 done%0Anext"

    def test_skips_missing_properties(self):
        assert annotations.command("warning", "m", file=None) == "::warning::m"


class TestAnnotate:
    def test_single_line_span_has_columns(self, capsys):
        loc = SourceSpan(Position(12, 5), Position(12, 48))
        annotations.annotate("error", "boom", file="src/Vault.sol", loc=loc, title="Storage variable moved")

        out = capsys.readouterr().out.strip()
        assert out == (
            "::error file=src/Vault.sol,title=Storage variable moved,"
            "line=12,endLine=12,col=5,endColumn=48::boom"
        )

    def test_multi_line_span_has_no_columns(self, capsys):
        loc = SourceSpan(Position(9, 1), Position(25, 1))
        line = annotations.annotate("warning", "note", file="src/Vault.sol", loc=loc)

        assert "line=9,endLine=25" in line
        assert "col=" not in line
        assert capsys.readouterr().out.strip() == line


def test_group(capsys):
    with annotations.group("Check storage layout"):
        print("inside")

    assert capsys.readouterr().out.splitlines() == ["::group::Check storage layout", "inside", "::endgroup::"]


class TestSetOutput:
    def test_appends_to_outputs_file(self, tmp_path, monkeypatch):
        outputs = tmp_path / "outputs"
        outputs.write_text("previous=1\n")
        monkeypatch.setenv("GITHUB_OUTPUT", str(outputs))

        assert annotations.set_output("artifact", "main.Vault-1a2b3c4d.json")
        assert outputs.read_text() == "previous=1\nartifact=main.Vault-1a2b3c4d.json\n"

    def test_outside_github_actions(self, monkeypatch):
        monkeypatch.delenv("GITHUB_OUTPUT", raising=False)
        assert annotations.set_output("artifact", "x") is False
