"""Exceptions raised by the stratafreq pipeline stages."""


class StratafreqError(Exception):
    """Base class for pipeline errors."""


class MissingInputError(StratafreqError, FileNotFoundError):
    """A stratum, SNP or identifier-list file is absent."""

    def __init__(self, path, what="input file"):
        self.path = str(path)
        super().__init__(f"Missing {what}: {self.path}")


class LabelMismatchError(StratafreqError, ValueError):
    """Allele or genotype labels for one SNP differ between strata."""

    def __init__(self, snp, stratum, expected, found):
        self.snp = snp
        self.stratum = stratum
        self.expected = tuple(expected)
        self.found = tuple(found)
        super().__init__(
            f"Label mismatch for {snp} in stratum {stratum}: "
            f"expected {'/'.join(self.expected)}, found {'/'.join(self.found)}"
        )


class ExternalToolError(StratafreqError, RuntimeError):
    """An external command could not be run or exited non-zero."""

    def __init__(self, command, returncode=None, stderr=""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr or ""
        message = f"Command failed ({returncode}): {' '.join(self.command)}"
        if self.stderr:
            message += f"\n{self.stderr.strip()}"
        super().__init__(message)
