import asyncio

import pytest

from smithagent.bouncer import Bouncer, CheckFailed, InitialCheck
from smithagent.config import ConfigCheck
from smithagent.magic import MagicHandle
from smithagent.police import Police

SERVER = "https://api.example.com/smith"


def magic_text(*commands):
    lines = ["[meta]", "magic_version = 2", f'server = "{SERVER}"']
    for index, command in enumerate(commands):
        lines += ["", "[[check]]", f'name = "check{index}"', f'cmd = "{command}"']
    return "\n".join(lines) + "\n"


async def load_magic(path, *commands):
    path.write_text(magic_text(*commands))
    magic = MagicHandle()
    await magic.load(path)
    return magic


def quiet_police(enabled):
    police = Police(restart_delay=3600, reboot_command=("true",))
    if enabled:
        police.enable_restarts()
    return police


def test_from_config_copies_name_and_command():
    check = InitialCheck.from_config(ConfigCheck(name="disk", cmd="df -h"))
    assert (check.name, check.cmd, check.success, check.data) == ("disk", "df -h", False, None)


@pytest.mark.asyncio
async def test_execute_success_collects_trimmed_output():
    check = InitialCheck(name="echo", cmd="echo '  hello  '")
    await check.execute()
    assert check.success is True
    assert check.data == "hello"


@pytest.mark.asyncio
async def test_execute_appends_output_on_repeat():
    check = InitialCheck(name="echo", cmd="echo hello")
    await check.execute()
    await check.execute()
    assert check.data == "hellohello"


@pytest.mark.asyncio
async def test_execute_failure_raises():
    check = InitialCheck(name="fail", cmd="echo partial; exit 3")
    with pytest.raises(CheckFailed):
        await check.execute()
    assert check.success is False
    assert check.data == "partial"


@pytest.mark.asyncio
async def test_run_checks_all_pass(tmp_path):
    magic = await load_magic(tmp_path / "magic.toml", "true", "echo ready")
    bouncer = Bouncer(magic, quiet_police(enabled=False))
    assert await bouncer.run_checks() is True
    assert [check.success for check in bouncer.checks] == [True, True]
    assert bouncer.problem is None


@pytest.mark.asyncio
async def test_run_checks_failure_without_police_enabled(tmp_path):
    magic = await load_magic(tmp_path / "magic.toml", "true", "false")
    police = quiet_police(enabled=False)
    bouncer = Bouncer(magic, police)
    assert await bouncer.run_checks() is False
    assert [check.success for check in bouncer.checks] == [True, False]
    assert bouncer.problem is None
    assert police.restart_scheduled is False


@pytest.mark.asyncio
async def test_problem_reported_and_solved(tmp_path):
    path = tmp_path / "magic.toml"
    magic = await load_magic(path, "false")
    police = quiet_police(enabled=True)
    bouncer = Bouncer(magic, police)

    assert await bouncer.run_checks() is False
    assert police.problems == (bouncer.problem,)
    assert police.restart_scheduled is True

    # a second failure does not report another problem
    first = bouncer.problem
    assert await bouncer.run_checks() is False
    assert police.problems == (first,)

    path.write_text(magic_text("true"))
    await magic.load(path)
    assert await bouncer.run_checks() is True
    assert bouncer.problem is None
    assert police.problems == ()
    assert police.restart_scheduled is False


@pytest.mark.asyncio
async def test_ok_retries_until_checks_pass(tmp_path):
    path = tmp_path / "magic.toml"
    magic = await load_magic(path, "false")
    bouncer = Bouncer(magic, quiet_police(enabled=False))

    task = asyncio.create_task(bouncer.ok(retry_delay=0.01))
    await asyncio.sleep(0.05)
    assert task.done() is False

    path.write_text(magic_text("echo fixed"))
    await magic.load(path)
    await asyncio.wait_for(task, timeout=2)

    assert [check.data for check in bouncer.checks] == ["fixed"]
    assert all(check.success for check in bouncer.checks)