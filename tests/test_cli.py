"""
CLI entry point tests (input errors exit with code 2 before any model call).
"""
import pytest

from cli.storyframe_cli import main


class TestContinueCommand:
    """`storyframe continue` rejects unreadable storyboard files."""

    def test_invalid_json_exits_with_input_error(self, tmp_path, capsys):
        path = tmp_path / "storyboard.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(SystemExit) as exc_info:
            main(["continue", str(path)])

        assert exc_info.value.code == 2
        assert "[ERROR] Invalid input" in capsys.readouterr().out

    def test_missing_file_exits_with_input_error(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["continue", str(tmp_path / "missing.json")])
        assert exc_info.value.code == 2

    def test_invalid_storyboard_exits_with_input_error(self, tmp_path, capsys):
        path = tmp_path / "storyboard.json"
        path.write_text('{"scenes": [], "aspectRatio": "4:3"}', encoding="utf-8")

        with pytest.raises(SystemExit) as exc_info:
            main(["continue", str(path)])
        assert exc_info.value.code == 2
