import os
from pathlib import Path

import pytest

from src.local.supervisor import reset as reset_module
from src.local.supervisor.errors import RecoveryFailed, ResetAborted, StopFailed
from src.local.supervisor.reset import clear_directory, compute_preserved_dirs, nested_data_dir
from src.local.supervisor.state import ResetMode, ResetRequest, WipeStatus
from src.log.render import translate
from tests.conftest import FakeProcess


def populate(root, *names):
    for name in names:
        path = root / name
        if "." in name:
            path.write_text("x", encoding="utf-8")
        else:
            path.mkdir()
            (path / "inner.txt").write_text("x", encoding="utf-8")


def listing(root):
    return sorted(p.name for p in root.iterdir())


#* --- Preserved set ---
def test_preserved_dirs_per_mode(tmp_path):
    normal = compute_preserved_dirs(ResetMode.NORMAL, tmp_path)
    hard = compute_preserved_dirs(ResetMode.HARD, tmp_path)

    assert normal == {"models", "output", "input", "user", "custom_nodes"}
    assert hard == {"models", "output", "input"}


def test_mode_messages_name_every_preserved_directory(tmp_path):
    for mode, key in ((ResetMode.NORMAL, "comfyui.reset.mode_normal"), (ResetMode.HARD, "comfyui.reset.mode_hard")):
        message = translate(key, "en")
        for name in compute_preserved_dirs(mode, tmp_path):
            assert name in message


def test_nested_data_dir_is_preserved(tmp_path):
    root = tmp_path / "ComfyUI"
    root.mkdir()

    assert nested_data_dir(root, root / "mydata" / "sub") == "mydata"
    assert "mydata" in compute_preserved_dirs(ResetMode.HARD, root, root / "mydata" / "sub")
    assert nested_data_dir(root, tmp_path / "elsewhere") is None
    assert nested_data_dir(root, root) is None


def test_nested_data_dir_uses_resolved_paths(tmp_path):
    root = tmp_path / "ComfyUI"
    (root / "store").mkdir(parents=True)
    link = tmp_path / "data-link"
    os.symlink(root / "store", link)

    assert nested_data_dir(root, link) == "store"
    assert nested_data_dir(root, root / "store" / ".." / ".." / "outside") is None


def test_parse_reset_mode():
    assert ResetMode.parse("hard") is ResetMode.HARD
    assert ResetMode.parse("HARD") is ResetMode.HARD
    assert ResetMode.parse("normal") is ResetMode.NORMAL
    assert ResetMode.parse("weird") is ResetMode.NORMAL
    assert ResetMode.parse(None) is ResetMode.NORMAL


#* --- clear_directory ---
def test_clear_directory_reports_each_entry(tmp_path):
    populate(tmp_path, "keep", "gone", "file.txt")

    outcomes = clear_directory(tmp_path, preserved={"keep"})

    by_name = {o.path.name: o for o in outcomes}
    assert by_name["keep"].status is WipeStatus.PRESERVED
    assert by_name["gone"].status is WipeStatus.DELETED and by_name["gone"].is_dir
    assert by_name["file.txt"].status is WipeStatus.DELETED and not by_name["file.txt"].is_dir
    assert listing(tmp_path) == ["keep"]


def test_clear_directory_missing_path_is_a_no_op(tmp_path):
    assert clear_directory(tmp_path / "missing", remove_dir_itself=True) == []


def test_clear_directory_can_remove_itself(tmp_path):
    target = tmp_path / "plugin"
    target.mkdir()
    populate(target, "a", "b.py")

    clear_directory(target, remove_dir_itself=True)

    assert not target.exists()


def refuse_to_unlink(monkeypatch, *names):
    real_unlink = Path.unlink

    def unlink(self, *args, **kwargs):
        if self.name in names:
            raise PermissionError(13, "Permission denied", str(self))
        return real_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", unlink)


def test_clear_directory_continues_after_a_failure(tmp_path, monkeypatch):
    populate(tmp_path, "bad.bin", "good")
    refuse_to_unlink(monkeypatch, "bad.bin")

    outcomes = clear_directory(tmp_path)

    statuses = {o.path.name: o.status for o in outcomes}
    assert statuses == {"bad.bin": WipeStatus.FAILED, "good": WipeStatus.DELETED}
    assert "Permission denied" in outcomes[0].reason
    assert listing(tmp_path) == ["bad.bin"]


def test_undeletable_file_inside_a_directory_does_not_stop_its_siblings(tmp_path, monkeypatch):
    comfy = tmp_path / "comfy"
    (comfy / "nested").mkdir(parents=True)
    (comfy / "locked.bin").write_text("x", encoding="utf-8")
    for i in range(20):
        (comfy / f"f{i}.py").write_text("x", encoding="utf-8")
    (comfy / "nested" / "deep.py").write_text("x", encoding="utf-8")
    populate(tmp_path, "web")
    refuse_to_unlink(monkeypatch, "locked.bin")

    outcomes = clear_directory(tmp_path)

    statuses = {o.path.name: o.status for o in outcomes}
    assert statuses == {"comfy": WipeStatus.FAILED, "web": WipeStatus.DELETED}
    assert outcomes[0].reason.startswith("locked.bin: ")
    assert listing(tmp_path) == ["comfy"]
    assert listing(comfy) == ["locked.bin"]


#* --- Orchestrator ---
async def test_normal_reset_keeps_user_data_and_plugins(supervisor, settings):
    root = settings.COMFYUI_PATH
    populate(root, "models", "output", "input", "user", "custom_nodes", "extra.log")

    result = await supervisor.reset(ResetRequest(language="en", mode=ResetMode.NORMAL))

    assert listing(root) == ["custom_nodes", "input", "models", "output", "user"]
    assert result.message == "ComfyUI has been reset successfully"
    assert any("Deleting file: extra.log" in line for line in result.logs)


async def test_hard_reset_keeps_only_models_input_output(supervisor, settings):
    root = settings.COMFYUI_PATH
    populate(root, "models", "output", "input", "user", "custom_nodes", "comfy", "main.py")

    await supervisor.reset(ResetRequest(language="en", mode=ResetMode.HARD))

    assert listing(root) == ["input", "models", "output"]


async def test_reset_aborts_without_deleting_when_stop_fails(supervisor, prober, settings, process_table):
    root = settings.COMFYUI_PATH
    populate(root, "comfy", "main.py", "extra.log")
    process_table["large"] = [FakeProcess(1)]
    prober.script(True)

    with pytest.raises(ResetAborted) as exc_info:
        await supervisor.reset(ResetRequest(language="en", mode=ResetMode.HARD))

    assert isinstance(exc_info.value, StopFailed)
    assert listing(root) == ["comfy", "extra.log", "main.py"]
    assert any("Failed to stop ComfyUI process" in line for line in exc_info.value.logs)


async def test_reset_stops_a_running_instance_first(supervisor, prober, settings, process_table):
    process_table["large"] = [FakeProcess(2)]
    prober.script(True, False)
    populate(settings.COMFYUI_PATH, "main.py")

    result = await supervisor.reset(ResetRequest(language="en"))

    assert any("Stopping running ComfyUI process" in line for line in result.logs)
    assert listing(settings.COMFYUI_PATH) == []


async def test_recovery_failure_still_reports_success(supervisor, settings, monkeypatch):
    async def failing_command(*args):
        raise RecoveryFailed("sh: script missing")

    monkeypatch.setattr(reset_module, "run_command", failing_command)
    populate(settings.COMFYUI_PATH, "extra.log")

    result = await supervisor.reset(ResetRequest(language="en"))

    assert result.message == "ComfyUI has been reset successfully"
    assert any("ERROR: Recovery process failed: sh: script missing" in line for line in result.logs)
    assert not (settings.COMFYUI_PATH / "extra.log").exists()


async def test_recovery_runs_the_expected_commands(supervisor, settings, recovery_commands):
    await supervisor.reset(ResetRequest(language="en"))

    script = str(settings.UPGRADE_SCRIPT)
    assert recovery_commands == [
        ("chmod", "+x", script),
        ("sh", script),
        ("rsync", "-av", "--update", f"{settings.SCRIPTS_SOURCE_DIR}/", f"{settings.SCRIPTS_TARGET_DIR}/"),
    ]


async def test_cache_is_emptied_but_kept(supervisor, settings):
    settings.CACHE_DIR.mkdir()
    populate(settings.CACHE_DIR, "blobs", "index.db")

    await supervisor.reset(ResetRequest(language="en"))

    assert settings.CACHE_DIR.is_dir()
    assert listing(settings.CACHE_DIR) == []


async def test_missing_cache_and_root_are_logged_not_fatal(supervisor, settings):
    settings.COMFYUI_PATH.rmdir()

    result = await supervisor.reset(ResetRequest(language="en"))

    assert any("ERROR: Cache directory does not exist" in line for line in result.logs)
    assert any("ComfyUI path does not exist" in line for line in result.logs)


async def test_reset_log_is_rendered_in_any_language_after_restart(supervisor, settings, prober):
    from src.local.supervisor import Supervisor

    populate(settings.COMFYUI_PATH, "models", "extra.log")
    await supervisor.reset(ResetRequest(language="en"))

    restarted = Supervisor(settings, prober=prober)
    zh = restarted.get_reset_logs("zh")
    en = restarted.get_reset_logs("en")

    assert zh["success"] is True and en["success"] is True
    assert len(zh["logs"]) == len(en["logs"]) > 0
    assert any("保留目录: models" in line for line in zh["logs"])
    assert any("Keeping directory: models" in line for line in en["logs"])
    assert en["message"] == f"Retrieved {len(en['logs'])} reset log entries"


async def test_a_new_reset_truncates_the_previous_log(supervisor, settings):
    await supervisor.reset(ResetRequest(language="en"))
    first = settings.RESET_LOG_PATH.read_text(encoding="utf-8").splitlines()
    await supervisor.reset(ResetRequest(language="en"))
    second = settings.RESET_LOG_PATH.read_text(encoding="utf-8").splitlines()

    assert len(first) == len(second)
    assert second[0].endswith("comfyui.reset.started")
