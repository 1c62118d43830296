from __future__ import annotations

import pytest

from cwdsync.errors import CwdSyncError, ExitCode
from cwdsync.terminal.hooks import (
    EMIT_FUNCTION,
    ORIGINAL_PROMPT_FUNCTION,
    CmdProbeStrategy,
    PosixHookStrategy,
    PowerShellHookStrategy,
    ShellHookInjector,
    select_strategy,
)
from cwdsync.terminal.models import Platform, Session, ShellKind


class _SpyWriter:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail = fail

    def __call__(self, session_id: str, payload: str) -> None:
        self.calls.append((session_id, payload))
        if self.fail:
            raise CwdSyncError("pipe closed", code=ExitCode.RUNTIME_ERROR)


@pytest.mark.parametrize(
    ("platform", "shell", "expected"),
    [
        (Platform.POSIX, ShellKind.ZSH, PosixHookStrategy),
        (Platform.POSIX, ShellKind.BASH, PosixHookStrategy),
        (Platform.POSIX, ShellKind.SH, PosixHookStrategy),
        (Platform.POSIX, ShellKind.PWSH, PowerShellHookStrategy),
        (Platform.WINDOWS, ShellKind.POWERSHELL, PowerShellHookStrategy),
        (Platform.WINDOWS, ShellKind.SH, PowerShellHookStrategy),
        (Platform.WINDOWS, ShellKind.CMD, CmdProbeStrategy),
    ],
)
def test_select_strategy_by_platform_and_shell(platform: Platform, shell: ShellKind, expected: type) -> None:
    assert isinstance(select_strategy(platform, shell), expected)


def test_posix_install_registers_prompt_and_cd_hooks_quietly() -> None:
    payload = PosixHookStrategy().render_install()
    lines = payload.splitlines()

    assert payload.endswith("\n")
    assert all(line.startswith(" ") for line in lines)
    assert "stty -echo" in lines[0]
    assert "stty echo" in lines[-2]
    assert lines[-1].strip() == EMIT_FUNCTION
    assert f"add-zsh-hook precmd {EMIT_FUNCTION}" in payload
    assert f"add-zsh-hook chpwd {EMIT_FUNCTION}" in payload
    assert "PROMPT_COMMAND" in payload
    assert "\\033]777;cwd=%s\\007\\033]7;file://%s\\007" in payload


def test_powershell_install_wraps_existing_prompt_in_one_line() -> None:
    payload = PowerShellHookStrategy().render_install()

    assert payload.endswith("\r\n")
    assert payload.count("\r\n") == 1
    assert "function global:prompt" in payload
    assert f"Set-Item function:global:{ORIGINAL_PROMPT_FUNCTION}" in payload
    assert f"Test-Path function:global:{ORIGINAL_PROMPT_FUNCTION}" in payload
    assert "]777;cwd=" in payload
    assert "]7;file://" in payload


def test_cmd_strategy_is_probe_only() -> None:
    strategy = CmdProbeStrategy()

    assert strategy.supports_persistent_hook is False
    assert strategy.render_install() == strategy.render_probe()
    assert strategy.render_probe().startswith("powershell.exe -NoLogo -NoProfile -Command ")
    assert strategy.render_probe().endswith("\r\n")


def test_install_writes_hook_once_per_session() -> None:
    writer = _SpyWriter()
    injector = ShellHookInjector(writer)
    session = Session(session_id="s1", shell=ShellKind.ZSH)

    injector.install(session)
    injector.install(session)

    assert session.hook_installed is True
    assert len(writer.calls) == 1
    assert writer.calls[0] == ("s1", PosixHookStrategy().render_install())


def test_probe_is_independent_of_install() -> None:
    writer = _SpyWriter()
    injector = ShellHookInjector(writer)
    session = Session(session_id="s1", shell=ShellKind.BASH)

    injector.probe(session)
    injector.probe(session)

    assert session.hook_installed is False
    assert [payload for _, payload in writer.calls] == [PosixHookStrategy().render_probe()] * 2


def test_write_failure_aborts_instrumentation_without_raising() -> None:
    writer = _SpyWriter(fail=True)
    injector = ShellHookInjector(writer)
    session = Session(session_id="s1")

    injector.install(session)
    injector.probe(session)
    injector.install(session)

    assert session.instrumentation_aborted is True
    assert len(writer.calls) == 1


def test_closed_session_is_never_instrumented() -> None:
    writer = _SpyWriter()
    injector = ShellHookInjector(writer)
    session = Session(session_id="s1", closed=True)

    injector.install(session)
    injector.probe(session)

    assert writer.calls == []
    assert session.hook_installed is False


def test_strategy_is_chosen_once_per_session() -> None:
    injector = ShellHookInjector(_SpyWriter())
    session = Session(session_id="s1", platform=Platform.WINDOWS, shell=ShellKind.CMD)

    first = injector.strategy_for(session)
    session.shell = ShellKind.PWSH

    assert injector.strategy_for(session) is first
    injector.forget("s1")
    assert isinstance(injector.strategy_for(session), PowerShellHookStrategy)


def test_cmd_session_install_sends_probe_payload() -> None:
    writer = _SpyWriter()
    injector = ShellHookInjector(writer)
    session = Session(session_id="c1", platform=Platform.WINDOWS, shell=ShellKind.CMD)

    injector.install(session)

    assert session.hook_installed is True
    assert writer.calls == [("c1", CmdProbeStrategy().render_probe())]
