import io
import os
import shutil
import tempfile
import unittest
import unittest.mock

from rich.console import Console

import debian_setup
from debian_setup import (
    AppConfig,
    CommandResult,
    CommandRunner,
    Prompter,
    SessionState,
    SetupContext,
)


class FakeRunner(CommandRunner):
    """CommandRunner that records executed argv lists and returns canned results.

    responses maps an argv prefix tuple to (returncode, stdout, stderr); the
    longest matching prefix wins and anything unmatched succeeds silently.
    """

    def __init__(self, dry_run=False, responses=None):
        super().__init__(dry_run=dry_run, timeout=5)
        self.executed = []
        self.responses = responses or {}

    def _execute(self, command):
        self.executed.append(list(command.argv))
        for prefix in sorted(self.responses, key=len, reverse=True):
            if tuple(command.argv[: len(prefix)]) == prefix:
                rc, out, err = self.responses[prefix]
                return CommandResult(command, rc, out, err)
        return CommandResult(command, 0, "", "")

    def ran(self, *prefix):
        return any(tuple(argv[: len(prefix)]) == prefix for argv in self.executed)


class ScriptedPrompter(Prompter):
    """Feeds pre-recorded answers to ask() and confirm()."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.prompts = []

    def _next(self, text):
        self.prompts.append(text)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {text}")
        return self.answers.pop(0)

    def ask(self, text, default=None):
        value = self._next(text)
        if value == "" and default is not None:
            return default
        return value

    def confirm(self, text):
        return self._next(text) in (True, "y")


INSTALLED = (0, "install ok installed", "")


class SetupTestCase(unittest.TestCase):
    """Base class with a temporary filesystem layout and a captured console."""

    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="debian_setup_test_")
        etc = os.path.join(self.tmp, "etc")
        os.makedirs(os.path.join(etc, "ssh"))
        os.makedirs(os.path.join(etc, "default"))
        self.config = AppConfig(
            LOG_FILE=os.path.join(self.tmp, "log", "debian-setup.log"),
            BACKUP_DIR=os.path.join(self.tmp, "backups"),
            TEMP_DIR=self.tmp,
            HOSTS_FILE=os.path.join(etc, "hosts"),
            HOSTNAME_FILE=os.path.join(etc, "hostname"),
            SSHD_CONFIG=os.path.join(etc, "ssh", "sshd_config"),
            LOCALE_GEN=os.path.join(etc, "locale.gen"),
            DEFAULT_LOCALE=os.path.join(etc, "default", "locale"),
            SUPPORTED_LOCALES=os.path.join(self.tmp, "SUPPORTED"),
            OS_RELEASE=os.path.join(etc, "os-release"),
            ENDLESSH_CONFIG=os.path.join(etc, "endlessh", "config"),
            AUTO_UPGRADES_FILE=os.path.join(etc, "apt", "apt.conf.d", "20auto-upgrades"),
            MOTD_SCRIPT=os.path.join(etc, "profile.d", "motd.sh"),
            MOTD_FILE=os.path.join(etc, "motd"),
            DOCKER_KEYRING=os.path.join(self.tmp, "keyrings", "docker.gpg"),
            DOCKER_SOURCES=os.path.join(etc, "apt", "sources.list.d", "docker.list"),
            SSH_RESTART_DELAY=0,
            REBOOT_DELAY=0,
            REBOOT_DELAY_SSH=0,
        )
        self.output = io.StringIO()
        patcher = unittest.mock.patch.object(
            debian_setup,
            "console",
            Console(file=self.output, theme=debian_setup.NORD_THEME, width=120),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def write(self, path, content):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as f:
            f.write(content)

    def read(self, path):
        with open(path) as f:
            return f.read()

    def make_ctx(
        self,
        answers=(),
        dry_run=False,
        responses=None,
        session=SessionState.NOT_CONNECTED_VIA_SSH,
    ):
        runner = FakeRunner(dry_run=dry_run, responses=responses)
        return SetupContext.create(
            self.config,
            dry_run=dry_run,
            runner=runner,
            prompter=ScriptedPrompter(answers),
            session=session,
        )
