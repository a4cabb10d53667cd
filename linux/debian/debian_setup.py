#!/usr/bin/env python3
"""
Guided Debian Server Setup Utility
----------------------------------

This interactive utility walks an operator through the first configuration of a
fresh Debian server. Every change is confirmed at a prompt, backed up before it
is made and logged to a persistent audit trail.

Features:
  • Interactive hostname, timezone, locale and SSH port configuration
  • Searchable numbered menus for timezones and UTF-8 locales
  • SSH port changes validated with `sshd -t` and rolled back on failure
  • Optional Endlessh SSH honeypot installation
  • Essential packages with unattended upgrades
  • Optional Docker installation with architecture detection and key verification
  • System status MOTD script
  • Simulation mode (--dry-run) that reports every change without making it
  • Nord-themed terminal interface with Pyfiglet banners

Requires root privileges.
Version: 2.0.0
"""

# ----------------------------------------------------------------
# Imports
# ----------------------------------------------------------------
import argparse
import logging
import os
import re
import shlex
import shutil
import signal
import socket
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pyfiglet
from rich.align import Align
from rich.box import ROUNDED
from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.prompt import Confirm, Prompt
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.theme import Theme
from rich.traceback import install as install_rich_traceback


# ----------------------------------------------------------------
# Configuration & Constants
# ----------------------------------------------------------------
@dataclass
class AppConfig:
    """Application configuration: fixed paths, package sets and timings."""

    # Application info
    VERSION: str = "2.0.0"
    APP_NAME: str = "Debian Setup"
    APP_SUBTITLE: str = "Guided Server Setup Utility"

    # Persistent state
    LOG_FILE: str = "/var/log/debian-setup.log"
    BACKUP_DIR: str = "/root/debian-setup-backups"
    TEMP_DIR: str = tempfile.gettempdir()

    # Files mutated in place
    HOSTS_FILE: str = "/etc/hosts"
    HOSTNAME_FILE: str = "/etc/hostname"
    SSHD_CONFIG: str = "/etc/ssh/sshd_config"
    LOCALE_GEN: str = "/etc/locale.gen"
    DEFAULT_LOCALE: str = "/etc/default/locale"
    SUPPORTED_LOCALES: str = "/usr/share/i18n/SUPPORTED"
    OS_RELEASE: str = "/etc/os-release"

    # Generated files
    ENDLESSH_CONFIG: str = "/etc/endlessh/config"
    AUTO_UPGRADES_FILE: str = "/etc/apt/apt.conf.d/20auto-upgrades"
    MOTD_SCRIPT: str = "/etc/profile.d/motd.sh"
    MOTD_FILE: str = "/etc/motd"

    # Docker repository
    DOCKER_GPG_URL: str = "https://download.docker.com/linux/debian/gpg"
    DOCKER_REPO_URL: str = "https://download.docker.com/linux/debian"
    DOCKER_KEYRING: str = "/usr/share/keyrings/docker-archive-keyring.gpg"
    DOCKER_SOURCES: str = "/etc/apt/sources.list.d/docker.list"
    DOCKER_FINGERPRINT: str = "9DC8 5822 9FC7 DD38 854A  E2D8 8D81 803C 0EBF CD88"
    DOCKER_ARCHITECTURES: List[str] = field(
        default_factory=lambda: ["amd64", "arm64", "armhf"]
    )
    DOCKER_PACKAGES: List[str] = field(
        default_factory=lambda: [
            "docker-ce",
            "docker-ce-cli",
            "containerd.io",
            "docker-buildx-plugin",
            "docker-compose-plugin",
        ]
    )

    ESSENTIAL_PACKAGES: List[str] = field(
        default_factory=lambda: [
            "sudo",
            "curl",
            "wget",
            "ntp",
            "htop",
            "unattended-upgrades",
            "apt-transport-https",
            "ca-certificates",
            "gnupg",
            "lsb-release",
        ]
    )

    # Operation settings
    COMMAND_TIMEOUT: int = 1800  # seconds, apt upgrades can be slow
    SSH_RESTART_DELAY: float = 2.0
    REBOOT_DELAY: int = 3
    REBOOT_DELAY_SSH: int = 10


# Non-interactive apt environment
NONINTERACTIVE: Dict[str, str] = {"DEBIAN_FRONTEND": "noninteractive"}

HOSTS_LOOPBACK = "127.0.1.1"
HOSTNAME_PATTERN = re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?$")
DECIMAL_PATTERN = re.compile(r"[0-9]+")

ENDLESSH_CONFIG_CONTENT = """\
# Endlessh SSH honeypot configuration
Port 22
Delay 10000
MaxLineLength 32
MaxClients 4096
LogLevel 1
KeepaliveTime 3600
"""

AUTO_UPGRADES_CONTENT = """\
APT::Periodic::Update-Package-Lists "1";
APT::Periodic::Unattended-Upgrade "1";
APT::Periodic::AutocleanInterval "7";
"""

MOTD_SCRIPT_CONTENT = r"""#!/bin/bash

# Only run for interactive shells
[[ $- == *i* ]] || return

hostname=$(hostname)
debian_version=$(cat /etc/debian_version 2>/dev/null || echo "Unknown")
ip_address=$(hostname -I 2>/dev/null | cut -d ' ' -f 1 || echo "Unknown")
uptime=$(uptime -p 2>/dev/null || echo "Unknown")
current_time=$(date +"%Y-%m-%d %H:%M:%S" 2>/dev/null || echo "Unknown")
load_avg=$(uptime | awk -F'load average:' '{print $2}' | xargs 2>/dev/null || echo "Unknown")

if command -v df >/dev/null 2>&1; then
    disk_usage=$(df -h / 2>/dev/null | awk 'NR==2 {print "Used: "$3"/"$2" ("$5")"}' || echo "Unknown")
else
    disk_usage="Unknown"
fi

if command -v free >/dev/null 2>&1; then
    memory_usage=$(free -h | awk '/^Mem:/ {print "Used: "$3"/"$2}' 2>/dev/null || echo "Unknown")
else
    memory_usage="Unknown"
fi

echo -e "\033[1;32m=== System Status ===\033[0m"
echo -e "\033[1;34mHostname:\033[0m $hostname (Debian $debian_version)"
echo -e "\033[1;34mIP Address:\033[0m $ip_address"
echo -e "\033[1;34mUptime:\033[0m $uptime"
echo -e "\033[1;34mLoad Average:\033[0m $load_avg"
echo -e "\033[1;34mCurrent Time:\033[0m $current_time"
echo -e "\033[1;34mDisk Usage:\033[0m $disk_usage"
echo -e "\033[1;34mMemory Usage:\033[0m $memory_usage"

if command -v last >/dev/null 2>&1; then
    last_login=$(last -n 2 -w | head -2 | tail -1 | awk '{print $1" from "$3" on "$4" "$5" "$6}' 2>/dev/null || echo "Unknown")
    echo -e "\033[1;34mLast Login:\033[0m $last_login"
fi

echo ""
"""


# ----------------------------------------------------------------
# Nord-Themed Colors and Rich Console
# ----------------------------------------------------------------
class NordColors:
    """Nord color palette for consistent theming throughout the application."""

    # Polar Night (dark background)
    POLAR_NIGHT_4: str = "#4C566A"

    # Snow Storm (light text)
    SNOW_STORM_1: str = "#D8DEE9"
    SNOW_STORM_2: str = "#E5E9F0"

    # Frost (blue accents)
    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"

    # Aurora (other accents)
    RED: str = "#BF616A"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"
    PURPLE: str = "#B48EAD"


NORD_THEME = Theme(
    {
        "info": f"bold {NordColors.FROST_2}",
        "warning": f"bold {NordColors.YELLOW}",
        "error": f"bold {NordColors.RED}",
        "success": f"bold {NordColors.GREEN}",
        "step": f"{NordColors.FROST_2}",
        "prompt": f"bold {NordColors.PURPLE}",
        "command": f"bold {NordColors.FROST_4}",
        "path": f"italic {NordColors.FROST_1}",
    }
)

console = Console(theme=NORD_THEME)


# ----------------------------------------------------------------
# Custom Exceptions
# ----------------------------------------------------------------
class SetupError(Exception):
    """Base exception for setup errors."""

    pass


class ExecutionError(SetupError):
    """Raised when command execution fails."""

    pass


class ValidationError(SetupError):
    """Raised when input or verification checks fail."""

    pass


class ConfigurationError(SetupError):
    """Raised when configuration changes fail."""

    pass


class PrivilegeError(SetupError):
    """Raised when insufficient permissions are detected."""

    pass


# ----------------------------------------------------------------
# Logging and Banner Helpers
# ----------------------------------------------------------------
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

logger = logging.getLogger("debian_setup")
logger.addHandler(logging.NullHandler())
logger.propagate = False


def setup_logging(config: AppConfig, dry_run: bool = False) -> logging.Logger:
    """
    Attach the persistent log file to the module logger.

    The log is append-only and never rotated. In simulation mode no file handler
    is attached so that the audit trail only records real changes. Logging is
    best-effort: an unwritable log path prints a warning and the run continues.

    Args:
        config: Application configuration holding LOG_FILE.
        dry_run: Whether the run is a simulation.

    Returns:
        The configured logger.
    """
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    # Failed log writes must never interrupt the run
    logging.raiseExceptions = False

    if dry_run:
        logger.addHandler(logging.NullHandler())
        return logger

    try:
        log_dir = os.path.dirname(config.LOG_FILE)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(config.LOG_FILE)
    except OSError as e:
        console.print(
            f"[warning]⚠ Cannot open log file {escape(config.LOG_FILE)}: {escape(str(e))}[/warning]"
        )
        logger.addHandler(logging.NullHandler())
        return logger

    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
    )
    logger.addHandler(file_handler)
    logger.info("Logging initialized: %s", config.LOG_FILE)
    return logger


def create_header(config: AppConfig) -> Panel:
    """
    Create an ASCII art header using Pyfiglet with a Nord-themed gradient.

    Returns:
        Panel: A Rich Panel containing the styled header.
    """
    fonts = ["slant", "small", "standard"]
    width = min(shutil.get_terminal_size().columns - 10, 80)
    ascii_art = ""

    for font in fonts:
        try:
            ascii_art = pyfiglet.Figlet(font=font, width=width).renderText(
                config.APP_NAME
            )
            if ascii_art.strip():
                break
        except pyfiglet.FontNotFound:
            logger.debug("Font %s not available", font)

    if not ascii_art.strip():
        ascii_art = f"=== {config.APP_NAME} ===\n"

    colors = [
        NordColors.FROST_1,
        NordColors.FROST_2,
        NordColors.FROST_3,
        NordColors.FROST_4,
    ]
    styled = Text()
    lines = [line for line in ascii_art.splitlines() if line.strip()]
    for i, line in enumerate(lines):
        styled.append(line + "\n", style=f"bold {colors[i % len(colors)]}")

    return Panel(
        styled,
        border_style=Style(color=NordColors.FROST_1),
        box=ROUNDED,
        padding=(1, 2),
        title=f"[bold {NordColors.SNOW_STORM_2}]v{config.VERSION}[/]",
        title_align="right",
        subtitle=f"[bold {NordColors.SNOW_STORM_1}]{config.APP_SUBTITLE}[/]",
        subtitle_align="center",
    )


def print_message(
    text: str,
    style: str = NordColors.FROST_2,
    prefix: str = "•",
    level: int = logging.INFO,
) -> None:
    """
    Print a styled message to the console and log it.

    Args:
        text: The message to print
        style: The color to use
        prefix: Symbol to prefix the message with
        level: Logging level for the log file entry
    """
    console.print(f"[{style}]{prefix} {escape(text)}[/{style}]")
    logger.log(level, text)


def print_step(text: str) -> None:
    print_message(text, NordColors.FROST_3, "➜")


def print_success(text: str) -> None:
    print_message(text, NordColors.GREEN, "✓", SUCCESS)


def print_warning(text: str) -> None:
    print_message(text, NordColors.YELLOW, "⚠", logging.WARNING)


def print_error(text: str) -> None:
    print_message(text, NordColors.RED, "✗", logging.ERROR)


def print_dry_run(text: str) -> None:
    """Report an action that simulation mode skipped. Never logged to file."""
    console.print(f"[warning]\\[DRY RUN][/warning] {escape(text)}")


def print_section(title: str) -> None:
    """
    Print a section header using Pyfiglet small font with a separator.

    Args:
        title: The section title to display
    """
    console.print()
    try:
        section_art = pyfiglet.figlet_format(title, font="small")
        console.print(section_art, style=f"bold {NordColors.FROST_2}")
    except pyfiglet.FontNotFound:
        console.print(f"[bold {NordColors.FROST_1}]== {title.upper()} ==[/]")

    console.print(f"[{NordColors.FROST_3}]{'─' * 60}[/]")
    logger.info("--- %s ---", title)


# ----------------------------------------------------------------
# Command Execution
# ----------------------------------------------------------------
@dataclass
class Command:
    """A system command as an argument list, never passed through a shell."""

    argv: List[str]
    description: Optional[str] = None
    env: Optional[Dict[str, str]] = None

    def display(self) -> str:
        prefix = "".join(f"{k}={shlex.quote(v)} " for k, v in (self.env or {}).items())
        return prefix + " ".join(shlex.quote(arg) for arg in self.argv)


@dataclass
class CommandResult:
    """Outcome of a command run."""

    command: Command
    returncode: int
    stdout: str = ""
    stderr: str = ""
    simulated: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """
    Executes commands, or only reports them in simulation mode.

    `run` is for commands that change the system and honours simulation mode.
    `query` is for read-only commands and always executes.
    """

    def __init__(self, dry_run: bool = False, timeout: int = AppConfig.COMMAND_TIMEOUT):
        self.dry_run = dry_run
        self.timeout = timeout

    def run(self, command: Command, check: bool = False) -> CommandResult:
        """
        Execute a state-changing command.

        Args:
            command: The command to run
            check: Raise ExecutionError on a non-zero exit code

        Returns:
            CommandResult for the command

        Raises:
            ExecutionError: If check is set and the command fails
        """
        cmd_str = command.display()

        if self.dry_run:
            print_dry_run(cmd_str)
            return CommandResult(command, 0, simulated=True)

        logger.info("Executing: %s", cmd_str)
        with console.status(f"[info]{escape(command.description or cmd_str)}...[/info]"):
            result = self._execute(command)

        if result.ok:
            logger.info("Command executed successfully: %s", cmd_str)
            if result.stdout.strip():
                logger.debug("Output: %s", result.stdout.strip())
            return result

        error_msg = f"Command failed with exit code {result.returncode}: {cmd_str}"
        print_error(error_msg)
        if result.stderr.strip():
            logger.error("Error: %s", result.stderr.strip())
        if check:
            raise ExecutionError(error_msg)
        return result

    def query(self, command: Command) -> CommandResult:
        """Run a read-only command, including in simulation mode."""
        result = self._execute(command)
        logger.debug(
            "Query %s exited with %d", command.display(), result.returncode
        )
        return result

    def _execute(self, command: Command) -> CommandResult:
        env = os.environ.copy()
        if command.env:
            env.update(command.env)
        try:
            proc = subprocess.run(
                command.argv,
                env=env,
                text=True,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            return CommandResult(command, 127, stderr=str(e))
        except subprocess.TimeoutExpired:
            return CommandResult(
                command, 124, stderr=f"timed out after {self.timeout} seconds"
            )
        return CommandResult(command, proc.returncode, proc.stdout or "", proc.stderr or "")


# ----------------------------------------------------------------
# Backup Management
# ----------------------------------------------------------------
@dataclass
class BackupRecord:
    original: str
    backup: str
    timestamp: int


class BackupManager:
    """Copies tracked files aside before they are mutated. Backups are never pruned."""

    def __init__(self, backup_dir: str, dry_run: bool = False) -> None:
        self.backup_dir = backup_dir
        self.dry_run = dry_run
        self.records: List[BackupRecord] = []

    def backup(self, path: str) -> Optional[BackupRecord]:
        """
        Back up a file as <name>.backup.<unix-timestamp> in the backup directory.

        Args:
            path: File to back up

        Returns:
            The BackupRecord, or None when the file is absent or in simulation mode
        """
        if self.dry_run or not os.path.isfile(path):
            return None

        os.makedirs(self.backup_dir, exist_ok=True)
        timestamp = int(time.time())
        base = os.path.join(
            self.backup_dir, f"{os.path.basename(path)}.backup.{timestamp}"
        )
        target = base
        counter = 1
        while os.path.exists(target):
            target = f"{base}.{counter}"
            counter += 1

        shutil.copy2(path, target)
        record = BackupRecord(path, target, timestamp)
        self.records.append(record)
        print_message(f"Backed up {path} to {target}")
        return record

    def latest(self, path: str) -> Optional[str]:
        """Return the most recent backup of a file, preferring this run's records."""
        for record in reversed(self.records):
            if record.original == path and os.path.isfile(record.backup):
                return record.backup

        prefix = f"{os.path.basename(path)}.backup."
        if not os.path.isdir(self.backup_dir):
            return None

        candidates = []
        for name in os.listdir(self.backup_dir):
            if not name.startswith(prefix):
                continue
            stamp, _, counter = name[len(prefix):].partition(".")
            if DECIMAL_PATTERN.fullmatch(stamp) and (
                not counter or DECIMAL_PATTERN.fullmatch(counter)
            ):
                candidates.append((int(stamp), int(counter or 0), name))
        if not candidates:
            return None
        return os.path.join(self.backup_dir, max(candidates)[2])

    def restore(self, path: str) -> bool:
        """
        Restore a file from its most recent backup.

        Returns:
            True if a backup was found and copied back, False otherwise
        """
        backup = self.latest(path)
        if backup is None:
            print_error(f"No backup found for {path}")
            return False
        shutil.copy2(backup, path)
        print_warning(f"Restored {path} from {backup}")
        return True


# ----------------------------------------------------------------
# Candidate Selection
# ----------------------------------------------------------------
class Prompter:
    """Blocking operator prompts backed by rich.prompt."""

    def __init__(self, prompt_console: Optional[Console] = None) -> None:
        self.console = prompt_console or console

    def ask(self, text: str, default: Optional[str] = None) -> str:
        message = f"[prompt]{text}[/prompt]"
        if default is None:
            return Prompt.ask(message, console=self.console)
        return Prompt.ask(message, console=self.console, default=default)

    def confirm(self, text: str) -> bool:
        return Confirm.ask(f"[prompt]{text}[/prompt]", console=self.console)


def filter_candidates(source: Sequence[str], term: str) -> List[str]:
    """Case-insensitive substring filter that keeps source order."""
    needle = term.lower()
    return [item for item in source if needle in item.lower()]


def parse_selection(raw: str, count: int) -> Optional[int]:
    """
    Parse a 1-based menu selection.

    Returns:
        The index if it is an integer within [1, count], otherwise None
    """
    raw = raw.strip()
    if not DECIMAL_PATTERN.fullmatch(raw):
        return None
    index = int(raw)
    if 1 <= index <= count:
        return index
    return None


def format_candidates(candidates: Sequence[str]) -> List[str]:
    return [f"{i}) {item}" for i, item in enumerate(candidates, 1)]


class CandidateSelector:
    """
    Turns a free-text search into one operator-chosen value from a large
    system-provided list such as timezones or locales.

    The source is called again for every search, so nothing carries over
    between attempts. An empty search term never consults the source. An
    invalid menu choice re-displays the same list without filtering again.
    """

    def __init__(self, prompter: Prompter, noun: str) -> None:
        self.prompter = prompter
        self.noun = noun

    def select(
        self,
        source: Callable[[], Sequence[str]],
        search_prompt: str,
        choice_prompt: str,
    ) -> str:
        while True:
            term = self.prompter.ask(search_prompt).strip()
            if not term:
                print_error(f"{self.noun.capitalize()} search term cannot be empty")
                continue

            candidates = filter_candidates(source(), term)
            if not candidates:
                print_error(f"No matching {self.noun}s found for '{term}'. Try again.")
                continue

            return self._choose(candidates, choice_prompt)

    def _choose(self, candidates: List[str], choice_prompt: str) -> str:
        while True:
            self.show(candidates)
            index = parse_selection(self.prompter.ask(choice_prompt), len(candidates))
            if index is not None:
                return candidates[index - 1]
            print_error(
                f"Invalid selection. Please enter a number between 1 and {len(candidates)}"
            )

    def show(self, candidates: Sequence[str]) -> None:
        console.print(f"[step]Matching {self.noun}s:[/step]")
        for line in format_candidates(candidates):
            console.print(line, markup=False, highlight=False)


# ----------------------------------------------------------------
# Config File Edits
# ----------------------------------------------------------------
@dataclass
class LineEdit:
    """
    Declarative single-line edit: replace lines matching a predicate, or append
    the replacement when nothing matches.
    """

    matches: Callable[[str], bool]
    replacement: str
    append_if_missing: bool = True
    replace_all: bool = True


def has_line(text: str, predicate: Callable[[str], bool]) -> bool:
    return any(predicate(line) for line in text.splitlines())


def apply_line_edit(text: str, edit: LineEdit) -> str:
    """Apply a LineEdit to file content and return the new content."""
    lines = text.splitlines(keepends=True)
    replaced = False

    for i, line in enumerate(lines):
        if not edit.matches(line.rstrip("\r\n")):
            continue
        if replaced and not edit.replace_all:
            continue
        ending = line[len(line.rstrip("\r\n")):]
        lines[i] = edit.replacement + ending
        replaced = True

    if not replaced:
        if not edit.append_if_missing:
            return text
        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"
        lines.append(edit.replacement + "\n")

    return "".join(lines)


def set_hosts_hostname(text: str, hostname: str) -> str:
    """Point the 127.0.1.1 loopback alias at hostname, appending it if absent."""
    return apply_line_edit(
        text,
        LineEdit(
            matches=lambda line: line.split()[:1] == [HOSTS_LOOPBACK],
            replacement=f"{HOSTS_LOOPBACK} {hostname}",
        ),
    )


def enable_locale_line(text: str, locale: str, charset: str = "UTF-8") -> str:
    """
    Make sure locale.gen generates the given locale.

    An active entry is left alone, a commented entry is uncommented and a
    missing entry is appended.
    """

    def is_active(line: str) -> bool:
        fields = line.split()
        return bool(fields) and fields[0] == locale

    def is_commented(line: str) -> bool:
        if not line.startswith("#"):
            return False
        fields = line.lstrip("#").split()
        return bool(fields) and fields[0] == locale

    if has_line(text, is_active):
        return text

    return apply_line_edit(
        text,
        LineEdit(
            matches=is_commented,
            replacement=f"{locale} {charset}",
            replace_all=False,
        ),
    )


def set_sshd_port(text: str, port: int) -> str:
    """Replace active Port lines, else commented #Port lines, else append one."""
    replacement = f"Port {port}"

    def active(line: str) -> bool:
        return line.startswith("Port ")

    def commented(line: str) -> bool:
        return line.startswith("#Port ")

    if has_line(text, active):
        return apply_line_edit(text, LineEdit(active, replacement))
    if has_line(text, commented):
        return apply_line_edit(text, LineEdit(commented, replacement))
    return apply_line_edit(text, LineEdit(lambda line: False, replacement))


def read_sshd_port(text: str, include_commented: bool = False) -> str:
    """Return the first configured SSH port, or "22" when none is set."""
    prefixes = ("Port", "#Port") if include_commented else ("Port",)
    for line in text.splitlines():
        fields = line.split()
        if len(fields) >= 2 and fields[0] in prefixes:
            return fields[1]
    return "22"


def parse_os_release(text: str) -> Dict[str, str]:
    values = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() and not key.startswith("#"):
            values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def parse_gpg_fingerprints(output: str, primary_only: bool = False) -> List[str]:
    """
    Extract fingerprints from `gpg --with-colons` output.

    With primary_only, only the fpr record that follows a pub record is kept;
    subkey fingerprints are skipped.
    """
    fingerprints = []
    previous = ""
    for line in output.splitlines():
        fields = line.split(":")
        if fields[0] == "fpr" and len(fields) > 9 and fields[9]:
            if not primary_only or previous == "pub":
                fingerprints.append(fields[9].upper())
        previous = fields[0]
    return fingerprints


def normalize_fingerprint(fingerprint: str) -> str:
    return "".join(fingerprint.split()).upper()


def validate_hostname(hostname: str) -> bool:
    return bool(HOSTNAME_PATTERN.match(hostname))


def validate_port(raw: str) -> int:
    """
    Parse an SSH port.

    Raises:
        ValidationError: If the value is not an integer in 1-65535
    """
    raw = raw.strip()
    if not DECIMAL_PATTERN.fullmatch(raw) or not 1 <= int(raw) <= 65535:
        raise ValidationError(
            "Invalid port number. Please enter a number between 1 and 65535."
        )
    return int(raw)


def is_supported_architecture(arch: str, allowed: Sequence[str]) -> bool:
    return arch.strip() in allowed


class ConfigEditor:
    """Applies text transformations and generated files to disk."""

    def __init__(self, dry_run: bool = False) -> None:
        self.dry_run = dry_run

    def edit(self, path: str, transform: Callable[[str], str], description: str) -> bool:
        """
        Rewrite a file through a pure transformation.

        Args:
            path: File to edit; a missing file is treated as empty
            transform: Function mapping old content to new content
            description: Human readable summary of the change

        Returns:
            True if the content changed (or would change in simulation mode)

        Raises:
            ConfigurationError: If the file cannot be read or written
        """
        try:
            original = ""
            if os.path.isfile(path):
                with open(path, encoding="utf-8", newline="") as f:
                    original = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read {path}: {e}") from e

        updated = transform(original)
        if updated == original:
            logger.info("%s already up to date (%s)", path, description)
            return False

        if self.dry_run:
            print_dry_run(f"Would update {path}: {description}")
            return True

        try:
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(updated)
        except OSError as e:
            raise ConfigurationError(f"Cannot write {path}: {e}") from e

        logger.info("Updated %s: %s", path, description)
        return True

    def write(self, path: str, content: str, mode: Optional[int] = None) -> None:
        """Write a generated file, creating its directory."""
        if self.dry_run:
            print_dry_run(f"Would write {path}")
            return

        try:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(content)
            if mode is not None:
                os.chmod(path, mode)
        except OSError as e:
            raise ConfigurationError(f"Cannot write {path}: {e}") from e
        logger.info("Wrote %s", path)

    def move(self, src: str, dst: str) -> None:
        if self.dry_run:
            print_dry_run(f"Would move {src} to {dst}")
            return
        try:
            os.replace(src, dst)
        except OSError as e:
            raise ConfigurationError(f"Cannot move {src} to {dst}: {e}") from e
        logger.info("Moved %s to %s", src, dst)


# ----------------------------------------------------------------
# System Queries
# ----------------------------------------------------------------
class SessionState(Enum):
    NOT_CONNECTED_VIA_SSH = "not_connected_via_ssh"
    CONNECTED_VIA_SSH = "connected_via_ssh"


def detect_ssh_session(environ: Mapping[str, str], who_output: str = "") -> SessionState:
    """
    Decide whether the operator is connected over SSH.

    Args:
        environ: Process environment
        who_output: Output of `who -m` for the controlling terminal

    Returns:
        The SessionState for this run
    """
    if environ.get("SSH_CONNECTION") or environ.get("SSH_CLIENT"):
        return SessionState.CONNECTED_VIA_SSH
    if environ.get("XDG_SESSION_TYPE") == "tty" and "pts" in who_output:
        return SessionState.CONNECTED_VIA_SSH
    return SessionState.NOT_CONNECTED_VIA_SSH


class SystemQueries:
    """Read-only access to live system state. Missing data reads as "Unknown"."""

    def __init__(self, runner: CommandRunner, config: AppConfig) -> None:
        self.runner = runner
        self.config = config

    def _read(self, path: str) -> Optional[str]:
        try:
            with open(path, encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            logger.debug("Cannot read %s: %s", path, e)
            return None

    def package_installed(self, package: str) -> bool:
        result = self.runner.query(
            Command(["dpkg-query", "-W", "-f=${Status}", package])
        )
        return result.ok and "install ok installed" in result.stdout

    def list_timezones(self) -> List[str]:
        result = self.runner.query(Command(["timedatectl", "list-timezones"]))
        if not result.ok:
            print_error("Unable to list timezones with timedatectl")
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def utf8_locales(self) -> List[str]:
        """UTF-8 locales from the SUPPORTED list, or `locale -a` when it is missing."""
        supported = self._read(self.config.SUPPORTED_LOCALES)
        if supported is not None:
            return [
                line.split()[0]
                for line in supported.splitlines()
                if line.strip() and not line.startswith("#") and "UTF-8" in line
            ]

        result = self.runner.query(Command(["locale", "-a"]))
        return [
            line.strip()
            for line in result.stdout.splitlines()
            if re.search(r"utf-?8", line, re.IGNORECASE)
        ]

    def hostname(self) -> str:
        result = self.runner.query(Command(["hostname"]))
        if result.ok and result.stdout.strip():
            return result.stdout.strip()
        return socket.gethostname() or "Unknown"

    def timezone(self) -> str:
        result = self.runner.query(
            Command(["timedatectl", "show", "--property=Timezone", "--value"])
        )
        return result.stdout.strip() if result.ok and result.stdout.strip() else "Unknown"

    def locale(self) -> str:
        content = self._read(self.config.DEFAULT_LOCALE)
        if content:
            for line in content.splitlines():
                key, _, value = line.partition("=")
                if key.strip() == "LANG" and value.strip():
                    return value.strip().strip('"')
        return os.environ.get("LANG") or "Unknown"

    def ssh_port(self, include_commented: bool = False) -> str:
        content = self._read(self.config.SSHD_CONFIG)
        return read_sshd_port(content or "", include_commented)

    def service_state(self, service: str) -> str:
        result = self.runner.query(Command(["systemctl", "is-active", service]))
        return result.stdout.strip() or "unknown"

    def architecture(self) -> str:
        result = self.runner.query(Command(["dpkg", "--print-architecture"]))
        return result.stdout.strip()

    def os_codename(self) -> str:
        content = self._read(self.config.OS_RELEASE)
        if content:
            codename = parse_os_release(content).get("VERSION_CODENAME")
            if codename:
                return codename
        result = self.runner.query(Command(["lsb_release", "-cs"]))
        return result.stdout.strip()

    def listening_ports(self) -> str:
        return self.runner.query(Command(["ss", "-tlnp"])).stdout

    def ssh_session(self) -> SessionState:
        who = self.runner.query(Command(["who", "-m"])).stdout
        return detect_ssh_session(os.environ, who)


# ----------------------------------------------------------------
# Setup Context
# ----------------------------------------------------------------
@dataclass
class SetupContext:
    """Everything a setup step needs. Handed to each step explicitly."""

    config: AppConfig
    runner: CommandRunner
    backups: BackupManager
    editor: ConfigEditor
    prompter: Prompter
    queries: SystemQueries
    session: SessionState = SessionState.NOT_CONNECTED_VIA_SSH
    dry_run: bool = False

    @classmethod
    def create(
        cls,
        config: AppConfig,
        dry_run: bool = False,
        runner: Optional[CommandRunner] = None,
        prompter: Optional[Prompter] = None,
        session: Optional[SessionState] = None,
    ) -> "SetupContext":
        runner = runner or CommandRunner(dry_run=dry_run, timeout=config.COMMAND_TIMEOUT)
        queries = SystemQueries(runner, config)
        return cls(
            config=config,
            runner=runner,
            backups=BackupManager(config.BACKUP_DIR, dry_run=dry_run),
            editor=ConfigEditor(dry_run=dry_run),
            prompter=prompter or Prompter(),
            queries=queries,
            session=session if session is not None else queries.ssh_session(),
            dry_run=dry_run,
        )


class StepStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# ----------------------------------------------------------------
# System Configuration
# ----------------------------------------------------------------
class SystemConfigurator:
    """Package updates, hostname, timezone and locale."""

    def __init__(self, ctx: SetupContext) -> None:
        self.ctx = ctx

    def update_system(self) -> StepStatus:
        """Refresh package lists and upgrade installed packages."""
        print_step("Updating package lists and upgrading installed packages...")
        runner = self.ctx.runner
        runner.run(Command(["apt-get", "update"], "Updating package lists"), check=True)
        runner.run(
            Command(
                ["apt-get", "upgrade", "-y"], "Upgrading packages", env=NONINTERACTIVE
            ),
            check=True,
        )
        print_success("System update and upgrade complete")
        return StepStatus.SUCCESS

    def configure_hostname(self) -> StepStatus:
        """
        Prompt for a hostname, apply it and update the loopback alias in /etc/hosts.

        Returns:
            StepStatus.SUCCESS once the hostname is applied
        """
        ctx = self.ctx
        while True:
            hostname = ctx.prompter.ask("Enter the desired hostname").strip()
            if validate_hostname(hostname):
                break
            print_error(
                "Invalid hostname. Must be 1-63 characters, alphanumeric and hyphens "
                "only, cannot start/end with hyphen."
            )

        ctx.backups.backup(ctx.config.HOSTNAME_FILE)
        ctx.backups.backup(ctx.config.HOSTS_FILE)
        ctx.runner.run(Command(["hostnamectl", "set-hostname", hostname]), check=True)
        ctx.editor.edit(
            ctx.config.HOSTS_FILE,
            lambda text: set_hosts_hostname(text, hostname),
            f"{HOSTS_LOOPBACK} {hostname}",
        )
        print_success(f"Hostname set to {hostname}")
        return StepStatus.SUCCESS

    def configure_timezone(self) -> StepStatus:
        ctx = self.ctx
        timezone = CandidateSelector(ctx.prompter, "timezone").select(
            ctx.queries.list_timezones,
            "Enter part of your timezone (e.g., 'Europe' or 'Berlin')",
            "Enter the number of your desired timezone",
        )
        ctx.runner.run(Command(["timedatectl", "set-timezone", timezone]), check=True)
        print_success(f"Timezone set to {timezone}")
        return StepStatus.SUCCESS

    def configure_locale(self) -> StepStatus:
        """
        Select a UTF-8 locale, enable it in locale.gen, generate it and make it
        the default LANG.
        """
        ctx = self.ctx
        if not ctx.queries.package_installed("locales"):
            print_warning("Package 'locales' missing, installing...")
            ctx.runner.run(
                Command(["apt-get", "install", "-y", "locales"], env=NONINTERACTIVE),
                check=True,
            )

        locale = CandidateSelector(ctx.prompter, "locale").select(
            ctx.queries.utf8_locales,
            "Enter part of your preferred locale (e.g., 'en' or 'de')",
            "Enter the number of your desired locale",
        )

        ctx.backups.backup(ctx.config.LOCALE_GEN)
        ctx.editor.edit(
            ctx.config.LOCALE_GEN,
            lambda text: enable_locale_line(text, locale),
            f"enable {locale}",
        )
        ctx.runner.run(Command(["locale-gen"], "Generating locales"), check=True)
        ctx.backups.backup(ctx.config.DEFAULT_LOCALE)
        ctx.runner.run(Command(["update-locale", f"LANG={locale}"]), check=True)
        print_success(f"Locale set to {locale}")
        return StepStatus.SUCCESS


# ----------------------------------------------------------------
# SSH Management
# ----------------------------------------------------------------
class SSHManager:
    """Installs the SSH server and changes its listening port safely."""

    def __init__(self, ctx: SetupContext) -> None:
        self.ctx = ctx

    def install_ssh(self) -> StepStatus:
        ctx = self.ctx
        if ctx.queries.package_installed("openssh-server"):
            print_message("openssh-server is already installed")
            return StepStatus.SKIPPED
        if not ctx.prompter.confirm("Would you like to install openssh-server?"):
            return StepStatus.SKIPPED

        print_step("Installing openssh-server...")
        ctx.runner.run(
            Command(["apt-get", "install", "-y", "openssh-server"], env=NONINTERACTIVE),
            check=True,
        )
        ctx.runner.run(Command(["systemctl", "enable", "ssh"]), check=True)
        ctx.runner.run(Command(["systemctl", "start", "ssh"]), check=True)
        print_success("openssh-server installed and configured")
        return StepStatus.SUCCESS

    def prompt_port(self, current: str) -> int:
        while True:
            raw = self.ctx.prompter.ask(
                f"Enter new SSH port (default: 22, current: {current})", default="22"
            )
            try:
                port = validate_port(raw)
            except ValidationError as e:
                print_error(str(e))
                continue
            if port < 1024 and port != 22:
                print_warning(
                    f"Port {port} is a well-known port and may conflict with other services."
                )
            return port

    def configure_ssh(self) -> StepStatus:
        """
        Change the SSH port.

        The sshd_config is backed up, rewritten and checked with `sshd -t`. A
        failed check restores the backup. The service is only restarted when the
        operator is not connected over SSH.

        Returns:
            StepStatus for the step

        Raises:
            ValidationError: If the rewritten configuration fails the syntax check
        """
        ctx = self.ctx
        if not ctx.queries.package_installed("openssh-server"):
            print_message("SSH server not installed, skipping configuration")
            return StepStatus.SKIPPED

        connected = ctx.session is SessionState.CONNECTED_VIA_SSH
        if connected:
            print_warning(
                "SSH connection detected. SSH service restart will be deferred to "
                "prevent disconnection."
            )

        current = ctx.queries.ssh_port(include_commented=True)
        port = self.prompt_port(current)
        if str(port) == current:
            print_message(f"SSH port unchanged ({port}). Skipping SSH configuration.")
            return StepStatus.SKIPPED

        sshd_config = ctx.config.SSHD_CONFIG
        ctx.backups.backup(sshd_config)
        ctx.editor.edit(
            sshd_config, lambda text: set_sshd_port(text, port), f"Port {port}"
        )

        if ctx.dry_run:
            if connected:
                print_dry_run("SSH restart would be deferred due to active SSH connection")
            else:
                print_dry_run("Would restart SSH service immediately")
            return StepStatus.SUCCESS

        self.validate_config(sshd_config)

        if connected:
            print_warning("SSH configuration updated but service restart deferred.")
            print_warning(f"After reboot, SSH will be available on port {port}")
            print_warning(
                "To apply immediately: run 'systemctl restart ssh' (may disconnect you)"
            )
        else:
            self.restart_and_verify(port)

        print_success(f"SSH port configured to {port}")
        return StepStatus.SUCCESS

    def validate_config(self, sshd_config: str) -> None:
        result = self.ctx.runner.query(Command(["sshd", "-t", "-f", sshd_config]))
        if result.ok:
            return
        if result.stderr.strip():
            logger.error("sshd -t: %s", result.stderr.strip())
        print_error("SSH configuration test failed. Restoring backup.")
        if self.ctx.backups.restore(sshd_config):
            raise ValidationError(f"sshd rejected {sshd_config}; previous version restored")
        raise ValidationError(
            f"sshd rejected {sshd_config}; no backup was available to restore"
        )

    def restart_and_verify(self, port: int) -> None:
        ctx = self.ctx
        if ctx.queries.service_state("ssh") != "active":
            print_message("SSH service is not active; new port applies on next start")
            return

        print_step("Restarting SSH service to apply port change...")
        ctx.runner.run(Command(["systemctl", "restart", "ssh"]), check=True)
        time.sleep(ctx.config.SSH_RESTART_DELAY)

        if f":{port} " in ctx.queries.listening_ports():
            print_success(f"SSH service restarted successfully on port {port}")
        else:
            print_warning(f"SSH service may not be listening on port {port}")


# ----------------------------------------------------------------
# Optional Services
# ----------------------------------------------------------------
class ServiceInstaller:
    """Optional installers: honeypot, essential packages, Docker and the MOTD."""

    def __init__(self, ctx: SetupContext) -> None:
        self.ctx = ctx

    def _enable_service(self, service: str) -> None:
        self.ctx.runner.run(Command(["systemctl", "enable", service]), check=True)
        self.ctx.runner.run(Command(["systemctl", "start", service]), check=True)

    def install_endlessh(self) -> StepStatus:
        ctx = self.ctx
        if ctx.queries.package_installed("endlessh"):
            print_message("Endlessh is already installed")
            return StepStatus.SKIPPED
        if not ctx.prompter.confirm(
            "Would you like to install Endlessh as SSH honeypot on port 22?"
        ):
            return StepStatus.SKIPPED

        print_step("Installing Endlessh...")
        ctx.runner.run(
            Command(["apt-get", "install", "-y", "endlessh"], env=NONINTERACTIVE),
            check=True,
        )
        ctx.backups.backup(ctx.config.ENDLESSH_CONFIG)
        ctx.editor.write(ctx.config.ENDLESSH_CONFIG, ENDLESSH_CONFIG_CONTENT)
        self._enable_service("endlessh")
        print_success("Endlessh installed and configured")
        return StepStatus.SUCCESS

    def install_essential_packages(self) -> StepStatus:
        ctx = self.ctx
        packages = ctx.config.ESSENTIAL_PACKAGES
        if not ctx.prompter.confirm(
            f"Install essential system packages ({', '.join(packages[:6])})?"
        ):
            return StepStatus.SKIPPED

        print_step("Installing essential packages...")
        ctx.runner.run(
            Command(
                ["apt-get", "install", "-y"] + packages,
                "Installing essential packages",
                env=NONINTERACTIVE,
            ),
            check=True,
        )

        if os.path.isfile(ctx.config.AUTO_UPGRADES_FILE):
            print_message(f"{ctx.config.AUTO_UPGRADES_FILE} exists, leaving it unchanged")
        else:
            ctx.editor.write(ctx.config.AUTO_UPGRADES_FILE, AUTO_UPGRADES_CONTENT)
        self._enable_service("unattended-upgrades")

        print_success("Essential packages installed and configured")
        return StepStatus.SUCCESS

    def install_docker(self) -> StepStatus:
        """
        Install Docker CE from the official repository.

        Only amd64, arm64 and armhf are supported; other architectures skip the
        step before any package command runs. The downloaded signing key must
        match the published fingerprint.

        Returns:
            StepStatus for the step

        Raises:
            ValidationError: If the signing key fingerprint does not match
        """
        ctx = self.ctx
        cfg = ctx.config
        if ctx.queries.package_installed("docker-ce"):
            print_message("Docker is already installed")
            return StepStatus.SKIPPED
        if not ctx.prompter.confirm("Would you like to install Docker?"):
            return StepStatus.SKIPPED

        arch = ctx.queries.architecture()
        if not is_supported_architecture(arch, cfg.DOCKER_ARCHITECTURES):
            print_error(
                f"Unsupported architecture: {arch or 'unknown'}. Docker installation skipped."
            )
            return StepStatus.SKIPPED

        print_step(f"Installing Docker for architecture: {arch}")
        self._install_docker_key()

        codename = ctx.queries.os_codename()
        if not codename:
            raise ConfigurationError("Unable to determine the Debian release codename")
        ctx.editor.write(
            cfg.DOCKER_SOURCES,
            f"deb [arch={arch} signed-by={cfg.DOCKER_KEYRING}] "
            f"{cfg.DOCKER_REPO_URL} {codename} stable\n",
        )
        ctx.runner.run(Command(["apt-get", "update"], "Updating package lists"), check=True)
        ctx.runner.run(
            Command(
                ["apt-get", "install", "-y"] + cfg.DOCKER_PACKAGES,
                "Installing Docker",
                env=NONINTERACTIVE,
            ),
            check=True,
        )
        self._enable_service("docker")
        print_success("Docker installed and started")
        return StepStatus.SUCCESS

    def _install_docker_key(self) -> None:
        ctx = self.ctx
        cfg = ctx.config

        if ctx.dry_run:
            armored = os.path.join(cfg.TEMP_DIR, "docker.asc")
            ctx.runner.run(Command(["curl", "-fsSL", cfg.DOCKER_GPG_URL, "-o", armored]))
            ctx.runner.run(
                Command(["gpg", "--batch", "--yes", "--dearmor", "-o", cfg.DOCKER_KEYRING, armored])
            )
            print_dry_run("Would verify Docker GPG key fingerprint")
            return

        temp_dir = tempfile.mkdtemp(prefix="debian_setup_", dir=cfg.TEMP_DIR)
        try:
            armored = os.path.join(temp_dir, "docker.asc")
            ctx.runner.run(
                Command(["curl", "-fsSL", cfg.DOCKER_GPG_URL, "-o", armored]), check=True
            )
            os.makedirs(os.path.dirname(cfg.DOCKER_KEYRING), exist_ok=True)
            ctx.runner.run(
                Command(
                    ["gpg", "--batch", "--yes", "--dearmor", "-o", cfg.DOCKER_KEYRING, armored]
                ),
                check=True,
            )
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        result = ctx.runner.query(
            Command(["gpg", "--show-keys", "--with-colons", cfg.DOCKER_KEYRING])
        )
        expected = normalize_fingerprint(cfg.DOCKER_FINGERPRINT)
        primary = set(parse_gpg_fingerprints(result.stdout, primary_only=True))
        if primary != {expected}:
            logger.error("Keyring primary fingerprints: %s", ", ".join(sorted(primary)) or "none")
            try:
                os.remove(cfg.DOCKER_KEYRING)
            except OSError as e:
                logger.warning("Cannot remove rejected keyring %s: %s", cfg.DOCKER_KEYRING, e)
            raise ValidationError("Docker GPG key verification failed")

        print_success("Docker GPG key fingerprint verified")

    def install_motd(self) -> StepStatus:
        ctx = self.ctx
        if not ctx.prompter.confirm("Would you like to install a system status MOTD script?"):
            return StepStatus.SKIPPED

        ctx.editor.write(ctx.config.MOTD_SCRIPT, MOTD_SCRIPT_CONTENT, mode=0o755)
        if os.path.isfile(ctx.config.MOTD_FILE):
            ctx.editor.move(ctx.config.MOTD_FILE, f"{ctx.config.MOTD_FILE}.disabled")
        print_success("MOTD script installed")
        return StepStatus.SUCCESS


# ----------------------------------------------------------------
# Summary & Reboot
# ----------------------------------------------------------------
@dataclass
class SystemState:
    hostname: str
    timezone: str
    locale: str
    ssh_port: str
    endlessh_status: str
    docker_status: str


class SummaryReporter:
    """Final summary built from live system state, and the reboot prompt."""

    def __init__(self, ctx: SetupContext) -> None:
        self.ctx = ctx

    def collect_state(self) -> SystemState:
        queries = self.ctx.queries
        if self.ctx.dry_run:
            endlessh = docker = "N/A (Dry Run)"
        else:
            endlessh = self._service_label("endlessh")
            docker = self._service_label("docker")
        return SystemState(
            hostname=queries.hostname(),
            timezone=queries.timezone(),
            locale=queries.locale(),
            ssh_port=queries.ssh_port(),
            endlessh_status=endlessh,
            docker_status=docker,
        )

    def _service_label(self, service: str) -> str:
        return "Active" if self.ctx.queries.service_state(service) == "active" else "Inactive"

    def show_summary(self) -> SystemState:
        state = self.collect_state()
        cfg = self.ctx.config

        table = Table(
            show_header=False,
            border_style=NordColors.FROST_3,
            box=ROUNDED,
            title=f"[bold {NordColors.GREEN}]Setup Complete[/]",
            title_justify="center",
        )
        table.add_column("Setting", style=f"bold {NordColors.FROST_2}")
        table.add_column("Value", style=NordColors.SNOW_STORM_1)
        for label, value in (
            ("Hostname", state.hostname),
            ("Timezone", state.timezone),
            ("Locale", state.locale),
            ("SSH Port", state.ssh_port),
            ("Endlessh Status", state.endlessh_status),
            ("Docker Status", state.docker_status),
            ("Log File", cfg.LOG_FILE),
            ("Backup Directory", cfg.BACKUP_DIR),
        ):
            table.add_row(label, escape(value))

        console.print()
        console.print(table)
        logger.info(
            "Summary: hostname=%s timezone=%s locale=%s ssh_port=%s endlessh=%s docker=%s",
            state.hostname,
            state.timezone,
            state.locale,
            state.ssh_port,
            state.endlessh_status,
            state.docker_status,
        )
        return state

    def ssh_port_changed(self) -> bool:
        return (
            self.ctx.queries.ssh_port() != "22"
            and self.ctx.session is SessionState.CONNECTED_VIA_SSH
        )

    def reboot_prompt(self) -> bool:
        """
        Offer a reboot. Never offered in simulation mode.

        Returns:
            True if a reboot was issued
        """
        ctx = self.ctx
        if ctx.dry_run:
            console.print()
            print_dry_run("Setup simulation complete. No reboot needed.")
            return False

        port = ctx.queries.ssh_port()
        port_changed = self.ssh_port_changed()
        console.print()
        if port_changed:
            console.print(
                Panel(
                    Text.assemble(
                        f"SSH port has been changed to {port} but the service hasn't been restarted.\n",
                        f"After reboot, connect using: ssh -p {port} user@server\n",
                        f"Make sure port {port} is open in your firewall!",
                    ),
                    title="⚠ IMPORTANT SSH NOTICE ⚠",
                    border_style=Style(color=NordColors.YELLOW),
                    box=ROUNDED,
                )
            )

        if not ctx.prompter.confirm(
            "Setup is complete. A reboot is recommended to ensure all changes take "
            "effect. Reboot now?"
        ):
            logger.info("Setup complete. Manual reboot recommended.")
            print_warning("Setup complete. Please reboot manually when convenient.")
            if port_changed:
                print_warning(f"Don't forget: SSH will be on port {port} after reboot.")
            return False

        print_message("Rebooting system as requested by user")
        if port_changed:
            print_warning(f"Remember to reconnect on port {port} after reboot!")
            delay = ctx.config.REBOOT_DELAY_SSH
        else:
            delay = ctx.config.REBOOT_DELAY
        self._countdown(delay)
        ctx.runner.run(Command(["reboot"]), check=True)
        return True

    def _countdown(self, seconds: int) -> None:
        if seconds <= 0:
            return
        with Progress(
            SpinnerColumn(spinner_name="dots", style=f"bold {NordColors.FROST_1}"),
            TextColumn(f"[bold {NordColors.GREEN}]Rebooting in"),
            BarColumn(bar_width=30, style=NordColors.FROST_4, complete_style=NordColors.RED),
            TextColumn(f"[bold {NordColors.YELLOW}]{{task.remaining}}s"),
            console=console,
        ) as progress:
            task = progress.add_task("Rebooting...", total=seconds)
            for _ in range(seconds):
                time.sleep(1)
                progress.update(task, advance=1)


# ----------------------------------------------------------------
# Main Orchestration Class
# ----------------------------------------------------------------
@dataclass
class StepRecord:
    name: str
    status: StepStatus
    message: str


class DebianServerSetup:
    """Runs every setup step in a fixed order; a failed step never stops the run."""

    def __init__(self, ctx: SetupContext) -> None:
        self.ctx = ctx
        self.system = SystemConfigurator(ctx)
        self.ssh = SSHManager(ctx)
        self.services = ServiceInstaller(ctx)
        self.reporter = SummaryReporter(ctx)
        self.results: List[StepRecord] = []

    def steps(self) -> List[tuple]:
        return [
            ("System Update", self.system.update_system),
            ("Hostname", self.system.configure_hostname),
            ("Timezone", self.system.configure_timezone),
            ("Locale", self.system.configure_locale),
            ("SSH Install", self.ssh.install_ssh),
            ("SSH Configure", self.ssh.configure_ssh),
            ("Endlessh Honeypot", self.services.install_endlessh),
            ("Essential Packages", self.services.install_essential_packages),
            ("Docker", self.services.install_docker),
            ("MOTD Banner", self.services.install_motd),
        ]

    def run_step(self, name: str, func: Callable[[], StepStatus]) -> StepRecord:
        """
        Run one step, converting any failure into a logged FAILED record.

        Args:
            name: Display name of the step
            func: Step method returning a StepStatus

        Returns:
            The StepRecord appended to the results
        """
        print_section(name)
        start = time.time()
        try:
            status = func()
            message = f"{status.value} in {time.time() - start:.1f}s"
        except SetupError as e:
            print_error(f"{name} failed: {e}")
            status, message = StepStatus.FAILED, str(e)
        except Exception as e:
            print_error(f"{name} failed unexpectedly: {e}")
            logger.exception("Unexpected error in %s", name)
            status, message = StepStatus.FAILED, str(e)

        record = StepRecord(name, status, message)
        self.results.append(record)
        return record

    def status_report(self) -> None:
        """Display a table reporting the outcome of every setup step."""
        icons = {StepStatus.SUCCESS: "✓", StepStatus.FAILED: "✗", StepStatus.SKIPPED: "–"}
        styles = {
            StepStatus.SUCCESS: "success",
            StepStatus.FAILED: "error",
            StepStatus.SKIPPED: "step",
        }

        table = Table(
            show_header=True,
            header_style=f"bold {NordColors.FROST_1}",
            border_style=NordColors.FROST_3,
            box=ROUNDED,
            title=f"[bold {NordColors.FROST_2}]Setup Status[/]",
            title_justify="center",
            expand=True,
        )
        table.add_column("Task", style=f"bold {NordColors.FROST_2}")
        table.add_column("Status", justify="center")
        table.add_column("Message", style=NordColors.SNOW_STORM_1, ratio=3)

        counts = {status: 0 for status in StepStatus}
        for record in self.results:
            counts[record.status] += 1
            style = styles[record.status]
            table.add_row(
                record.name,
                f"[{style}]{icons[record.status]} {record.status.value.upper()}[/]",
                escape(record.message),
            )

        summary = Text()
        summary.append("Status Summary: ", style=f"bold {NordColors.FROST_3}")
        summary.append(f"{counts[StepStatus.SUCCESS]} Succeeded", style=f"bold {NordColors.GREEN}")
        summary.append(" | ")
        summary.append(f"{counts[StepStatus.FAILED]} Failed", style=f"bold {NordColors.RED}")
        summary.append(" | ")
        summary.append(
            f"{counts[StepStatus.SKIPPED]} Skipped", style=f"bold {NordColors.POLAR_NIGHT_4}"
        )

        console.print(
            Panel(
                Group(table, Align.center(summary)),
                border_style=Style(color=NordColors.FROST_4),
                padding=(0, 1),
                box=ROUNDED,
            )
        )

    def run(self) -> int:
        """
        Run the complete guided setup.

        Returns:
            int: Exit code, 0 once the summary has been shown
        """
        cfg = self.ctx.config
        console.print(create_header(cfg))
        print_step(f"Starting {cfg.APP_NAME} v{cfg.VERSION}")
        if self.ctx.dry_run:
            console.print("[warning]Dry run mode enabled. No commands will be executed.[/warning]")
        else:
            logger.info("Script started by user: %s", os.environ.get("SUDO_USER") or "root")
        if self.ctx.session is SessionState.CONNECTED_VIA_SSH:
            print_message("Running over an SSH session")

        for name, func in self.steps():
            self.run_step(name, func)

        print_section("Summary")
        self.status_report()
        self.reporter.show_summary()
        self.reporter.reboot_prompt()

        failed = [r.name for r in self.results if r.status is StepStatus.FAILED]
        if failed:
            print_warning(f"Completed with failed steps: {', '.join(failed)}")
        print_success("Script execution completed")
        return 0


# ----------------------------------------------------------------
# Signal Handling
# ----------------------------------------------------------------
def signal_handler(signum: int, frame: Optional[Any]) -> None:
    """
    Log the interruption and exit immediately.

    Args:
        signum: Signal number
        frame: Current stack frame
    """
    try:
        sig_name = signal.Signals(signum).name
    except ValueError:
        sig_name = f"signal {signum}"

    console.print()
    print_error(f"Script interrupted by {sig_name}")
    sys.exit(128 + signum)


def install_signal_handlers() -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, signal_handler)


# ----------------------------------------------------------------
# Main Entry Point
# ----------------------------------------------------------------
def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="debian-setup",
        description="Guided Debian server setup: hostname, timezone, locale, SSH, "
        "optional honeypot, essential packages, Docker and MOTD.",
    )
    parser.add_argument(
        "-n",
        "--dry-run",
        "-dry-run",
        dest="dry_run",
        action="store_true",
        help="Show what would be executed without making changes",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {AppConfig.VERSION}"
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point for the Debian Setup Utility.

    Returns:
        int: Exit code (0 for success, non-zero for failure)
    """
    args = parse_args(argv)
    install_rich_traceback(show_locals=False)
    config = AppConfig()

    if os.geteuid() != 0:
        print_error("This script must be run as root.")
        print_message("Run with: sudo debian-setup", NordColors.YELLOW)
        return 1

    setup_logging(config, dry_run=args.dry_run)
    install_signal_handlers()

    try:
        ctx = SetupContext.create(config, dry_run=args.dry_run)
        return DebianServerSetup(ctx).run()
    except KeyboardInterrupt:
        print_error("Script interrupted")
        return 130
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        console.print_exception()
        return 1


if __name__ == "__main__":
    sys.exit(main())
