"""Shell instrumentation that makes a running shell report its directory.

A strategy is picked once per session from the platform and shell family.
Installing writes the hook into the shell's input stream; the shell then emits
an OSC 777 ``cwd=`` marker followed by an OSC 7 ``file://`` marker before every
prompt (and on ``cd`` where the shell has a directory-change hook).
"""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable

from cwdsync.errors import CwdSyncError
from cwdsync.terminal.models import Platform, Session, ShellKind

logger = py_logging.getLogger(__name__)

EMIT_FUNCTION = "__cwdsync_emit_cwd"
ORIGINAL_PROMPT_FUNCTION = "__cwdsync_original_prompt"

InputWriter = Callable[[str, str], None]

_POSIX_PRINTF = (
    "printf '\\033]777;cwd=%s\\007\\033]7;file://%s\\007' \"$PWD\" \"$PWD\""
)

# Single quotes only, so the body survives being nested in a cmd.exe "..." argument.
_POWERSHELL_EMIT_BODY = (
    "$e = [char]27; $b = [char]7; "
    "$p = (Get-Location).Path.Replace('\\', '/'); "
    "$u = $p; if (-not $u.StartsWith('/')) { $u = '/' + $u }; "
    "[Console]::Write($e + ']777;cwd=' + $p + $b + $e + ']7;file://' + $u + $b)"
)


class HookStrategy:
    name = ""
    supports_persistent_hook = True
    line_ending = "\n"

    def install_payloads(self) -> list[str]:
        raise NotImplementedError

    def probe_payload(self) -> str:
        raise NotImplementedError

    def render_install(self) -> str:
        return "".join(line + self.line_ending for line in self.install_payloads())

    def render_probe(self) -> str:
        return self.probe_payload() + self.line_ending


class PosixHookStrategy(HookStrategy):
    """zsh hook arrays, ``PROMPT_COMMAND`` fallback for everything else."""

    name = "posix"

    def install_payloads(self) -> list[str]:
        register = (
            'if [ -n "${ZSH_VERSION:-}" ]; then '
            "autoload -Uz add-zsh-hook; "
            f"add-zsh-hook precmd {EMIT_FUNCTION}; "
            f"add-zsh-hook chpwd {EMIT_FUNCTION}; "
            "else "
            f'case ";${{PROMPT_COMMAND:-}};" in *";{EMIT_FUNCTION};"*) ;; '
            f'*) PROMPT_COMMAND="{EMIT_FUNCTION}${{PROMPT_COMMAND:+;$PROMPT_COMMAND}}" ;; '
            "esac; "
            "fi"
        )
        # Leading spaces keep every line out of history (ignorespace / HIST_IGNORE_SPACE).
        return [
            " { [ -t 0 ] && stty -echo; } 2>/dev/null",
            f" {EMIT_FUNCTION}() {{ {_POSIX_PRINTF}; }}",
            f" {register}",
            " { [ -t 0 ] && stty echo; } 2>/dev/null",
            f" {EMIT_FUNCTION}",
        ]

    def probe_payload(self) -> str:
        return f" {_POSIX_PRINTF}"


class PowerShellHookStrategy(HookStrategy):
    """Wrap ``prompt`` so markers are emitted before any existing custom prompt runs."""

    name = "powershell"
    line_ending = "\r\n"

    def install_payloads(self) -> list[str]:
        statements = [
            f"function global:{EMIT_FUNCTION} {{ {_POWERSHELL_EMIT_BODY} }}",
            (
                f"if (-not (Test-Path function:global:{ORIGINAL_PROMPT_FUNCTION})) {{ "
                "if (Test-Path function:prompt) { "
                f"Set-Item function:global:{ORIGINAL_PROMPT_FUNCTION} "
                "(Get-Item function:prompt).ScriptBlock } }"
            ),
            (
                f"function global:prompt {{ {EMIT_FUNCTION}; "
                f"if (Test-Path function:{ORIGINAL_PROMPT_FUNCTION}) {{ {ORIGINAL_PROMPT_FUNCTION} }} "
                "else { 'PS ' + (Get-Location).Path + '> ' } }"
            ),
            EMIT_FUNCTION,
        ]
        return [". { " + "; ".join(statements) + " }"]

    def probe_payload(self) -> str:
        return f". {{ {_POWERSHELL_EMIT_BODY} }}"


class CmdProbeStrategy(HookStrategy):
    """cmd.exe has no reliable prompt hook: only one-shot probes are possible."""

    name = "cmd"
    supports_persistent_hook = False
    line_ending = "\r\n"

    def install_payloads(self) -> list[str]:
        return [self.probe_payload()]

    def probe_payload(self) -> str:
        return f'powershell.exe -NoLogo -NoProfile -Command "{_POWERSHELL_EMIT_BODY}"'


def select_strategy(platform: Platform, shell: ShellKind) -> HookStrategy:
    if shell == ShellKind.CMD:
        return CmdProbeStrategy()
    if shell in {ShellKind.PWSH, ShellKind.POWERSHELL}:
        return PowerShellHookStrategy()
    if platform == Platform.WINDOWS:
        # Any other shell under Windows is reached through a PowerShell host.
        return PowerShellHookStrategy()
    return PosixHookStrategy()


class ShellHookInjector:
    def __init__(self, writer: InputWriter) -> None:
        self._writer = writer
        self._strategies: dict[str, HookStrategy] = {}

    def strategy_for(self, session: Session) -> HookStrategy:
        strategy = self._strategies.get(session.session_id)
        if strategy is None:
            strategy = select_strategy(session.platform, session.shell)
            self._strategies[session.session_id] = strategy
            logger.debug(
                "Selected hook strategy session=%s strategy=%s persistent=%s",
                session.session_id,
                strategy.name,
                strategy.supports_persistent_hook,
            )
        return strategy

    def install(self, session: Session) -> None:
        if session.hook_installed or session.instrumentation_aborted or not session.alive:
            return
        session.hook_installed = True
        strategy = self.strategy_for(session)
        if not strategy.supports_persistent_hook:
            logger.info(
                "Shell has no prompt hook; directory tracking degraded to probes session=%s shell=%s",
                session.session_id,
                session.shell.value,
            )
        self._send(session, strategy.render_install(), step="install")

    def probe(self, session: Session) -> None:
        if session.instrumentation_aborted or not session.alive:
            return
        self._send(session, self.strategy_for(session).render_probe(), step="probe")

    def forget(self, session_id: str) -> None:
        self._strategies.pop(session_id, None)

    def _send(self, session: Session, payload: str, *, step: str) -> None:
        try:
            self._writer(session.session_id, payload)
        except (CwdSyncError, OSError) as exc:
            session.instrumentation_aborted = True
            logger.error(
                "Shell instrumentation aborted session=%s step=%s error=%s",
                session.session_id,
                step,
                exc,
            )
            return
        logger.debug(
            "Shell instrumentation sent session=%s step=%s bytes=%s",
            session.session_id,
            step,
            len(payload),
        )
