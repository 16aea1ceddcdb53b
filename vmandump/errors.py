class VmandumpError(Exception):
    """Base class for every error raised by vmandump"""


class FormatError(VmandumpError):
    """A repository index, package archive or manifest could not be decoded"""


class MissingIndexError(FormatError):
    """The repository index has no index.plist entry"""


class StateCorruptError(VmandumpError):
    """The persisted state file exists but cannot be decoded"""


class PolicyViolation(VmandumpError):
    """A link or output path points outside of the managed tree"""


class FetchError(VmandumpError):
    """A remote index or package could not be downloaded or verified"""
