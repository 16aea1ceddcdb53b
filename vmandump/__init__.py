### Importing required general modules

import argparse
import os.path
import sys

from concurrent.futures import ThreadPoolExecutor
from loguru import logger

from .config import Config, DEFAULT_PREFIX, load_defaults
from .errors import VmandumpError
from .extract import Extractor
from .fetch import RepositoryFetcher, is_remote
from .state import State, load_state, save_state
from .xbps import Package, match_files, open_archive, parse_repodata, read_files


class Manager:
    """
    Main class for vmandump
    """

    def __init__(self, config: Config, logger=logger) -> None:
        """Initializes the Manager class for vmandump

        Args:
            config (Config): Output directory, prefix and run options
            logger (logger): Logger object
        """
        self.config = config
        self.logger = logger
        self.extractor = Extractor(config, logger)
        self.fetcher = RepositoryFetcher(config.cache_dir, logger)

    def run(self, indices: list[str]) -> State:
        """Extracts the pages of every package listed in the given repository indices

        Args:
            indices: Local paths or urls of <arch>-repodata files

        Returns:
            State: The new state, only holding packages of the given indices

        Raises:
            StateCorruptError: If the previous state cannot be read
            VmandumpError, OSError: If an index cannot be read or the state cannot be written
        """
        current = load_state(self.config.state_path)
        self.logger.debug(f"Loaded {len(current)} packages from {self.config.state_path}")

        next_state: State = {}
        for location in indices:
            self.process_index(location, current, next_state)

        if not self.config.dry_run:
            os.makedirs(self.config.outdir, exist_ok=True)
            save_state(self.config.state_path, next_state)
            self.logger.debug(f"Saved {len(next_state)} packages to {self.config.state_path}")

        return next_state

    def process_index(self, location: str, current: State, next_state: State) -> None:
        """Processes every package of one repository index, recording results in next_state"""
        if is_remote(location):
            base = location.rstrip("/").rsplit("/", 1)[0]
            path = self.fetcher.fetch_index(location)
        else:
            base = os.path.dirname(location)
            path = location

        with open(path, "rb") as findex:
            try:
                _, index = parse_repodata(findex)
            except VmandumpError as e:
                raise type(e)(f"parse {location!r}: {e}") from e

        self.logger.debug(f"{location} lists {len(index)} packages")

        pending = []
        seen = set(next_state)
        for pkg in index.values():
            # noarch packages are listed by the repodata of every arch
            if pkg.sha256 in seen:
                continue
            seen.add(pkg.sha256)

            if pkg.sha256 in current:
                next_state[pkg.sha256] = current[pkg.sha256]
                continue
            pending.append(pkg)

        if self.config.jobs > 1 and len(pending) > 1:
            with ThreadPoolExecutor(max_workers=self.config.jobs) as executor:
                results = executor.map(lambda pkg: self.try_process(base, pkg), pending)
                for pkg, files in zip(pending, results):
                    if files is not None:
                        next_state[pkg.sha256] = files
        else:
            for pkg in pending:
                files = self.try_process(base, pkg)
                if files is not None:
                    next_state[pkg.sha256] = files

    def try_process(self, base: str, pkg: Package) -> list[str] | None:
        """Runs process, reporting failures instead of raising them

        Returns:
            list[str] | None: The matched paths, None if the package has to be retried next run
        """
        try:
            return self.process(base, pkg)
        except (VmandumpError, OSError) as error:
            self.logger.error(f"{pkg.pkgver}.{pkg.arch}: {error}")
            return None

    def process(self, base: str, pkg: Package) -> list[str]:
        """Extracts the pages of a single package

        Args:
            base: Folder or url of the repository holding the package
            pkg: Package to process

        Returns:
            list[str]: Package paths below the prefix, empty if there are none
        """
        if is_remote(base):
            pkgpath = self.fetcher.fetch_package(base, pkg)
        else:
            pkgpath = os.path.join(base, pkg.filename)

        with open(pkgpath, "rb") as fpkg:
            files = read_files(fpkg)

            manpages = match_files(files, self.config.prefix)
            if not manpages:
                return []

            print(f"{pkg.pkgver}.{pkg.arch} @ {pkg.sha256}")

            if self.config.dry_run:
                for name in manpages:
                    print(f"\t{name}")
                return manpages

            fpkg.seek(0)
            with open_archive(fpkg) as archive:
                self.extractor.extract(archive, set(manpages))

        return manpages


def main() -> None:
    """Main function for vmandump"""

    ### Setting up the argument parser
    parser = argparse.ArgumentParser(
        "vmandump", description="Extract man pages from XBPS repositories"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        required=False,
        help="Enable verbose logging",
        action="store_true",
        dest="verbose",
    )
    parser.add_argument(
        "--out",
        "-o",
        help="Output directory (default: .)",
        default=None,
        dest="out",
    )
    parser.add_argument(
        "--prefix",
        help=f"Only extract files below this path (default: {DEFAULT_PREFIX})",
        default=None,
        dest="prefix",
    )
    parser.add_argument(
        "--cache-dir",
        help="Folder remote repositories are downloaded to",
        default=None,
        dest="cache_dir",
    )
    parser.add_argument(
        "--jobs",
        "-j",
        help="Number of packages processed at once",
        type=int,
        default=None,
        dest="jobs",
    )
    parser.add_argument(
        "--dry-run",
        "-n",
        help="List the matching files without extracting them",
        action="store_true",
        dest="dry_run",
    )
    parser.add_argument(
        "--config",
        help="JSON file with default options",
        default=None,
        dest="config",
    )
    parser.add_argument(
        "indices",
        help="Path or url of repository index (/repo/$ARCH-repodata)",
        nargs="+",
    )

    ### Setting logging level
    args = parser.parse_args()
    logging_level = "DEBUG" if args.verbose else "ERROR"

    logger.remove()
    logger.add(sys.stderr, level=logging_level, format="vmandump: {message}")

    logger.debug(f"Running with args: {args}")

    ### Call function
    try:
        config = Config.from_args(vars(args), load_defaults(args.config))
        man = Manager(config, logger)
        man.run(args.indices)
    except (VmandumpError, OSError, SystemError, ValueError) as e:
        print(f"vmandump: {e}", file=sys.stderr)
        sys.exit(1)
