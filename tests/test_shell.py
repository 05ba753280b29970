import shlex
import subprocess
import sys
from unittest.mock import patch

import pytest

from nyocoder.errors import ShellBlockedError, ShellTimeoutError
from nyocoder.tools.shell import ShellExecutor, run_process, truncate_middle


def test_blocked_command_basic(tmp_path):
    executor = ShellExecutor(project_root=str(tmp_path))

    with pytest.raises(ShellBlockedError) as exc:
        executor.execute("rm -rf /")

    assert str(exc.value).startswith("Blocked:")


def test_blocked_inside_substitution(tmp_path):
    executor = ShellExecutor(project_root=str(tmp_path))

    assert executor.block_reason("echo $(mkfs.ext4 /dev/sdb1)") is not None
    assert executor.block_reason("echo `shutdown now`") is not None


def test_blocked_through_eval_and_quotes(tmp_path):
    executor = ShellExecutor(project_root=str(tmp_path), blocked_commands=["git push"])

    assert executor.block_reason("eval 'git push origin main'") is not None
    assert executor.block_reason('g"it" pu\'sh\' --force') is not None


def test_configured_block_list(tmp_path):
    executor = ShellExecutor(project_root=str(tmp_path), blocked_commands=["sudo ", "  "])

    assert "sudo" in executor.block_reason("sudo apt install x")
    assert executor.block_reason("echo hello") is None


def test_safe_command_allowed(tmp_path):
    (tmp_path / "sample.txt").write_text("content", encoding="utf-8")
    executor = ShellExecutor(project_root=str(tmp_path))

    echo_output, echo_code = executor.execute("echo hello")
    ls_output, _ = executor.execute("ls")

    assert echo_output.strip() == "hello"
    assert echo_code == 0
    assert "sample.txt" in ls_output


def test_exit_code_and_stderr_merged(tmp_path):
    executor = ShellExecutor(project_root=str(tmp_path))

    output, code = executor.execute("echo oops >&2; exit 2")

    assert code == 2
    assert "oops" in output


def test_timeout_handling(tmp_path):
    executor = ShellExecutor(project_root=str(tmp_path), timeout=1)

    with patch(
        "nyocoder.tools.shell.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="bash -c sleep 5", timeout=1),
    ):
        with pytest.raises(ShellTimeoutError) as exc:
            executor.execute("sleep 5")

    assert exc.value.timeout == 1
    assert str(exc.value) == "Process 'bash' timed out after 1s"


def test_output_truncation(tmp_path):
    executor = ShellExecutor(project_root=str(tmp_path), max_output=1000)
    py = shlex.quote(sys.executable)

    result, _ = executor.execute(f"{py} -c \"print(\\\"a\\\" * 9001)\"")

    assert "...(truncated)..." in result
    assert len(result) < 9001


def test_truncate_middle_keeps_head_and_tail():
    text = "H" * 50 + "M" * 100 + "T" * 50
    out = truncate_middle(text, 100)
    assert out.startswith("H" * 50)
    assert out.endswith("T" * 50)
    assert "M" not in out
    assert truncate_middle("short", 100) == "short"


def test_run_process_separate_stderr(tmp_path):
    output, code = run_process(["bash", "-c", "echo out; echo err >&2"], cwd=str(tmp_path),
                               combine_stderr=False)
    assert code == 0
    assert output == "out\n\nerr\n"
