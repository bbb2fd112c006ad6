"""
Process identity listings used to verify leftover pid files
"""
import shlex
import shutil
import logging
import subprocess
from typing import Dict, List, Union

import psutil

from ..errors import ConfigurationError, ProcessLookupUnavailableError
from ..interfaces import IProcessLookup

logger = logging.getLogger(__name__)


class PsutilProcessLookup(IProcessLookup):
    """Lists live processes through psutil"""

    def list_processes(self) -> Dict[int, str]:
        processes = {}
        try:
            for proc in psutil.process_iter(['pid', 'name', 'cmdline']):
                cmdline = proc.info.get('cmdline')
                identity = ' '.join(cmdline) if cmdline else (proc.info.get('name') or '')
                processes[proc.info['pid']] = identity
        except psutil.Error as e:
            raise ProcessLookupUnavailableError(f"Could not list processes with psutil: {e}")
        return processes


class CommandProcessLookup(IProcessLookup):
    """
    Lists live processes by running an external tool such as ``jps -l``.

    Every output line is expected to read ``<pid> <identifier>``; lines that
    do not start with a pid are ignored.
    """

    def __init__(self, command: Union[str, List[str]]):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ConfigurationError("Process lookup command is empty")

    def list_processes(self) -> Dict[int, str]:
        if shutil.which(self.command[0]) is None:
            raise ProcessLookupUnavailableError(
                f"{self.command[0]} executable not found; cannot verify leftover pid files"
            )

        result = subprocess.run(self.command, capture_output=True, text=True)
        if result.returncode != 0:
            raise ProcessLookupUnavailableError(
                f"'{' '.join(self.command)}' finished with non-zero exit value {result.returncode}: "
                f"{result.stderr.strip()}"
            )

        processes = {}
        for line in result.stdout.splitlines():
            parts = line.strip().split(None, 1)
            if not parts or not parts[0].isdigit():
                continue
            processes[int(parts[0])] = parts[1] if len(parts) > 1 else ''
        logger.debug(f"{' '.join(self.command)} reported {len(processes)} processes")
        return processes


def create_process_lookup(kind: str) -> IProcessLookup:
    """Build the lookup named in the cluster config"""
    if kind == 'psutil':
        return PsutilProcessLookup()
    return CommandProcessLookup(kind)
