from typing import Optional


class UpdaterError(Exception):
    """Base class for everything the updater raises on purpose."""


class ConfigError(UpdaterError):
    pass


class ControlPlaneError(UpdaterError):
    """The Docker engine could not be reached or queried."""


class RegistryLoginError(UpdaterError):
    def __init__(self, host: str, detail: str = ''):
        self.host = host
        self.detail = detail
        super().__init__(f"Login to {host or 'default registry'} failed: {detail}".rstrip(': '))


class CommandError(UpdaterError):
    """A docker CLI command exited with a non-zero status."""

    def __init__(self, args, returncode: Optional[int] = None, stderr: str = ''):
        self.cmd = list(args)
        self.returncode = returncode
        self.stderr = (stderr or '').strip()
        status = f"exited with {returncode}" if returncode is not None else "failed"
        super().__init__(f"{' '.join(self.cmd[:3])} {status}: {self.stderr}")


class CommandTimeout(CommandError):
    def __init__(self, args, timeout):
        self.timeout = timeout
        super().__init__(args, None, f"timed out after {timeout}s")
