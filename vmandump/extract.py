import os
import shutil
import tarfile

from loguru import logger as default_logger

from .config import Config
from .errors import FormatError, PolicyViolation
from .xbps import EntryKind, normalize_name


class Extractor:
    def __init__(self, config: Config, logger=None) -> None:
        """Extracts the wanted entries of a package archive into the output directory

        Args:
            config (Config): Output directory and prefix to extract below
            logger (logger, optional): Logger object for diagnostics. Defaults to the loguru logger.
        """
        self.config = config
        self.logger = logger or default_logger

    def extract(self, archive: tarfile.TarFile, wanted: set[str]) -> list[str]:
        """Streams the archive and materializes every entry found in wanted

        Entries are removed from wanted as soon as they are seen, the scan stops
        once it is empty. The rest of the archive is left unread, the caller
        still has to close it.

        Args:
            archive (tarfile.TarFile): Archive opened in stream mode
            wanted (set[str]): Normalized paths still to extract

        Returns:
            list[str]: Output paths that were written

        Raises:
            FormatError: If the archive is corrupted
        """
        written = []
        deferred = []

        while wanted:
            try:
                member = archive.next()
            except (tarfile.TarError, EOFError) as e:
                raise FormatError(f"read package: {e}") from e

            if member is None:
                break

            name = normalize_name(member.name)
            if name not in wanted:
                continue
            wanted.discard(name)

            try:
                outpath = self.config.output_path(name)
            except PolicyViolation as e:
                self.logger.error(f"skipping {member.name!r}: {e}")
                continue

            try:
                os.makedirs(os.path.dirname(outpath), exist_ok=True)
            except OSError as error:
                self.logger.error(f"mkdir: {os.path.dirname(outpath)!r}: {error}")
                continue
            print(f"\t{outpath}")

            match EntryKind.parse(member):
                case EntryKind.SYMLINK:
                    if self.__symlink(outpath, member.linkname):
                        written.append(outpath)

                case EntryKind.HARDLINK:
                    target = self.__hardlink_target(outpath, member.linkname)
                    if target is None:
                        continue
                    if not os.path.lexists(target):
                        deferred.append((outpath, target))
                        continue
                    if self.__hardlink(outpath, target):
                        written.append(outpath)

                case EntryKind.FILE:
                    if self.__copy(archive, member, outpath):
                        written.append(outpath)

                case EntryKind.DIRECTORY | EntryKind.OTHER:
                    self.logger.error(
                        f"skipping unknown type {member.type!r} at {member.name!r}"
                    )

        # Targets stored after their hardlink in the archive exist by now
        for outpath, target in deferred:
            if self.__hardlink(outpath, target):
                written.append(outpath)

        return written

    @staticmethod
    def __replace(outpath: str) -> None:
        if os.path.lexists(outpath) and not os.path.isdir(outpath):
            os.unlink(outpath)

    def __symlink(self, outpath: str, linkname: str) -> bool:
        if os.path.dirname(linkname) or linkname in ("", ".", ".."):
            self.logger.error(f"skipping symlink: {outpath!r} -> {linkname!r}")
            return False

        try:
            self.__replace(outpath)
            os.symlink(linkname, outpath)
        except OSError as error:
            self.logger.error(f"symlink: {outpath!r} -> {linkname!r}: {error}")
            return False

        return True

    def __hardlink_target(self, outpath: str, linkname: str) -> str | None:
        name = normalize_name(linkname)
        if not name.startswith(self.config.prefix):
            self.logger.error(f"skipping hardlink: {outpath!r} -> {linkname!r}")
            return None

        try:
            return self.config.output_path(name)
        except PolicyViolation as e:
            self.logger.error(f"skipping hardlink: {outpath!r} -> {linkname!r}: {e}")
            return None

    def __hardlink(self, outpath: str, target: str) -> bool:
        try:
            self.__replace(outpath)
            os.link(target, outpath)
        except OSError as error:
            self.logger.error(f"hardlink: {outpath!r} -> {target!r}: {error}")
            return False

        return True

    def __copy(self, archive: tarfile.TarFile, member: tarfile.TarInfo, outpath: str) -> bool:
        # Never write through a symlink or hardlink left behind by a previous run
        try:
            self.__replace(outpath)
        except OSError as error:
            self.logger.error(f"{outpath!r}: {error}")
            return False

        try:
            out_f = open(outpath, "wb")
        except OSError as error:
            self.logger.error(f"{outpath!r}: {error}")
            return False

        with out_f:
            try:
                shutil.copyfileobj(archive.extractfile(member), out_f)
            except OSError as error:
                self.logger.error(f"copy: {outpath!r}: {error}")
                return False
            except (tarfile.TarError, EOFError) as e:
                raise FormatError(f"read {member.name!r}: {e}") from e

        return True
