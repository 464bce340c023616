# Test suite for tool output truncation

import os
import time

import pytest

from codeloop.utils.truncation import (
    OUTPUT_FILE_PREFIX,
    cleanup_old_truncation_files,
    truncate_output,
)


class TestTruncateOutput:
    """Test suite for cutting oversized output"""

    def test_small_output_is_unchanged(self, tmp_path):
        """Output within both limits is returned as-is"""
        result = truncate_output("one\ntwo", max_lines=10, max_bytes=100, output_dir=tmp_path)

        assert not result.truncated
        assert result.content == "one\ntwo"
        assert result.output_path is None

    def test_line_limit(self, tmp_path):
        """Only the first max_lines lines are kept"""
        text = "\n".join(f"line {i}" for i in range(50))
        result = truncate_output(text, max_lines=5, max_bytes=10_000, output_dir=tmp_path)

        assert result.truncated
        assert result.content.startswith("line 0\nline 1\nline 2\nline 3\nline 4\n\n")
        assert "45 lines truncated" in result.content
        assert result.output_path.read_text(encoding="utf-8") == text
        assert result.stats["original_lines"] == 50

    def test_byte_limit(self, tmp_path):
        """Whole lines are kept until the byte limit would be exceeded"""
        text = "\n".join("x" * 10 for _ in range(10))  # 109 bytes
        result = truncate_output(text, max_lines=100, max_bytes=25, output_dir=tmp_path)

        assert result.truncated
        assert result.stats["kept_lines"] == 2
        assert result.stats["kept_bytes"] == 21
        assert "88 bytes truncated" in result.content
        assert str(result.output_path) in result.content


class TestCleanup:
    """Test suite for removing expired side files"""

    def test_old_files_are_removed(self, tmp_path):
        """Files older than the retention period are deleted"""
        old = tmp_path / f"{OUTPUT_FILE_PREFIX}old"
        new = tmp_path / f"{OUTPUT_FILE_PREFIX}new"
        other = tmp_path / "keep.txt"
        for path in (old, new, other):
            path.write_text("x", encoding="utf-8")
        ten_days_ago = time.time() - 10 * 86400
        os.utime(old, (ten_days_ago, ten_days_ago))
        os.utime(other, (ten_days_ago, ten_days_ago))

        removed = cleanup_old_truncation_files(tmp_path, retention_days=7)

        assert removed == 1
        assert not old.exists()
        assert new.exists()
        assert other.exists()

    def test_missing_directory(self, tmp_path):
        """A missing directory is not an error"""
        assert cleanup_old_truncation_files(tmp_path / "absent") == 0


if __name__ == "__main__":
    pytest.main([__file__])
