import os
import json

from .errors import PolicyViolation

DEFAULT_PREFIX = "/usr/share/man/"
STATE_FILENAME = ".vmandump"


def config_folder() -> str:
    """Returns the folder holding the user configuration for vmandump"""
    if os.name == "nt":  # Windows
        return os.getenv("APPDATA") + "/vmandump"
    elif os.name in ("posix", "darwin"):  # Linux or MacOS
        return os.path.expanduser("~/.config/vmandump")
    else:
        raise SystemError("Unsupported OS")


def default_cache_dir() -> str:
    """Returns the folder remote repositories are downloaded to"""
    if os.name == "nt":
        return os.getenv("LOCALAPPDATA", os.getenv("APPDATA")) + "/vmandump/cache"

    if "XDG_CACHE_HOME" in os.environ and os.environ["XDG_CACHE_HOME"]:
        return os.path.join(os.environ["XDG_CACHE_HOME"], "vmandump")

    return os.path.expanduser("~/.cache/vmandump")


def load_defaults(file_location: str | None = None) -> dict:
    """Loads the optional JSON file with default options

    Args:
        file_location (str, optional): Location of the file. Defaults to config.json in the config folder.

    Returns:
        dict: Options found in the file, empty if there is no file

    Raises:
        SystemError: If the file is corrupted, or was given explicitly and does not exist
    """
    if file_location is None:
        file_location = config_folder() + "/config.json"

        if not os.path.exists(file_location):
            return {}

    elif not os.path.exists(file_location):
        raise SystemError(f"Config file @ {file_location} does not exist!")

    try:
        with open(file_location) as f:
            contents = json.load(f)
    except ValueError:
        raise SystemError(
            f"Config file @ {file_location} is corrupted! Please fix or delete it and try again."
        )

    if not isinstance(contents, dict):
        raise SystemError(
            f"Config file @ {file_location} must contain a JSON object, not {type(contents).__name__}"
        )

    return contents


class Config:
    def __init__(
        self,
        outdir: str = ".",
        prefix: str = DEFAULT_PREFIX,
        cache_dir: str | None = None,
        jobs: int = 1,
        dry_run: bool = False,
    ) -> None:
        """Options shared by every component computing output paths

        Args:
            outdir (str, optional): Directory the pages are extracted to. Defaults to ".".
            prefix (str, optional): Only paths below this prefix are extracted. Defaults to /usr/share/man/.
            cache_dir (str, optional): Download cache for remote repositories. Defaults to the user cache folder.
            jobs (int, optional): Number of packages processed at once. Defaults to 1.
            dry_run (bool, optional): List matching pages without extracting them. Defaults to False.
        """
        if not prefix.startswith("/"):
            raise ValueError(f"Prefix must be an absolute path: {prefix}")
        if jobs < 1:
            raise ValueError(f"Number of jobs must be positive: {jobs}")

        self.outdir = outdir
        self.prefix = prefix if prefix.endswith("/") else prefix + "/"
        self.cache_dir = cache_dir or default_cache_dir()
        self.jobs = jobs
        self.dry_run = dry_run

    @classmethod
    def from_args(cls, args: dict, defaults: dict | None = None) -> "Config":
        """Builds a config from parsed arguments, falling back to the defaults file"""
        defaults = defaults or {}

        def pick(arg_key: str, file_key: str, fallback):
            value = args.get(arg_key)
            if value is not None:
                return value
            return defaults.get(file_key, fallback)

        return cls(
            outdir=pick("out", "out", "."),
            prefix=pick("prefix", "prefix", DEFAULT_PREFIX),
            cache_dir=pick("cache_dir", "cache-dir", None),
            jobs=int(pick("jobs", "jobs", 1)),
            dry_run=bool(args.get("dry_run", False)),
        )

    @property
    def state_path(self) -> str:
        return os.path.join(self.outdir, STATE_FILENAME)

    def output_path(self, name: str) -> str:
        """Maps a normalized package path onto its location in the output directory

        Args:
            name (str): Path inside the package, starting with the prefix

        Returns:
            str: Path below the output directory

        Raises:
            PolicyViolation: If the path is not below the prefix or escapes the output directory
        """
        if not name.startswith(self.prefix):
            raise PolicyViolation(f"{name!r} is not below {self.prefix!r}")

        relative = name[len(self.prefix):]
        outpath = os.path.normpath(os.path.join(self.outdir, relative))

        root = os.path.abspath(self.outdir)
        target = os.path.abspath(outpath)
        if target == root or os.path.commonpath([root, target]) != root:
            raise PolicyViolation(f"{name!r} escapes the output directory")

        return outpath
