"""
Readers for XBPS repository indices and package archives.

A repository index (<arch>-repodata) is a gzip compressed tar holding
index.plist and optionally index-meta.plist. A package (.xbps) is an xz
compressed tar holding ./props.plist, ./files.plist and the installed files.
"""

import enum
import plistlib
import tarfile

from typing import IO, Any, NamedTuple
from xml.parsers.expat import ExpatError

from .errors import FormatError, MissingIndexError

INDEX_NAME = "index.plist"
INDEX_META_NAME = "index-meta.plist"
FILES_NAME = "./files.plist"
PROPS_NAME = "./props.plist"

# Local repositories ship this instead of real signing metadata
DUMMY_META = b"DEADBEEF"


class EntryKind(enum.Enum):
    FILE = enum.auto()
    DIRECTORY = enum.auto()
    SYMLINK = enum.auto()
    HARDLINK = enum.auto()
    OTHER = enum.auto()

    @classmethod
    def parse(cls, member: tarfile.TarInfo) -> "EntryKind":
        match member.type:
            case tarfile.REGTYPE | tarfile.AREGTYPE | tarfile.CONTTYPE:
                return cls.FILE

            case tarfile.DIRTYPE:
                return cls.DIRECTORY

            case tarfile.SYMTYPE:
                return cls.SYMLINK

            case tarfile.LNKTYPE:
                return cls.HARDLINK

            case _:
                return cls.OTHER


class ManifestEntry(NamedTuple):
    kind: EntryKind
    name: str
    mtime: int = 0
    sha256: str | None = None
    target: str | None = None


class Files(NamedTuple):
    dirs: list[ManifestEntry]
    files: list[ManifestEntry]
    links: list[ManifestEntry]


class MetaData(NamedTuple):
    public_key: bytes
    public_key_size: int
    signature_by: str
    signature_type: str


class Package(NamedTuple):
    pkgver: str
    arch: str
    sha256: str
    size: int = 0
    short_desc: str = ""
    license: str = ""
    homepage: str = ""
    maintainer: str = ""
    build_date: str = ""
    depends: tuple[str, ...] = ()

    @classmethod
    def from_plist(cls, record: Any) -> "Package":
        """Builds a package from an index.plist or props.plist dictionary

        Raises:
            FormatError: If a mandatory key is missing
        """
        if not isinstance(record, dict):
            raise FormatError(f"package record is a {type(record).__name__}, not a dictionary")

        try:
            return cls(
                pkgver=record["pkgver"],
                arch=record["architecture"],
                sha256=record.get("filename-sha256", ""),
                size=int(record.get("filename-size", 0)),
                short_desc=record.get("short_desc", ""),
                license=record.get("license", ""),
                homepage=record.get("homepage", ""),
                maintainer=record.get("maintainer", ""),
                build_date=record.get("build-date", ""),
                depends=tuple(record.get("run_depends", ())),
            )
        except KeyError as e:
            raise FormatError(f"package record is missing {e.args[0]!r}") from e
        except (TypeError, ValueError) as e:
            raise FormatError(f"invalid package record: {e}") from e

    @property
    def filename(self) -> str:
        return f"{self.pkgver}.{self.arch}.xbps"


Index = dict[str, Package]


def normalize_name(name: str) -> str:
    """Strips the leading "." component archives store their paths with"""
    if name.startswith("./"):
        return name[1:]
    return name


def _decode_plist(buf: bytes, what: str) -> Any:
    try:
        return plistlib.loads(buf)
    except (ValueError, ExpatError) as e:
        raise FormatError(f"decode {what}: {e}") from e


def _parse_metadata(buf: bytes) -> MetaData | None:
    if buf == DUMMY_META:
        return None

    record = _decode_plist(buf, INDEX_META_NAME)
    if not isinstance(record, dict):
        raise FormatError(f"{INDEX_META_NAME} is not a dictionary")

    try:
        return MetaData(
            public_key=record.get("public-key", b""),
            public_key_size=int(record.get("public-key-size", 0)),
            signature_by=record.get("signature-by", ""),
            signature_type=record.get("signature-type", ""),
        )
    except (TypeError, ValueError) as e:
        raise FormatError(f"invalid {INDEX_META_NAME}: {e}") from e


def _parse_index(buf: bytes) -> Index:
    record = _decode_plist(buf, INDEX_NAME)
    if not isinstance(record, dict):
        raise FormatError(f"{INDEX_NAME} is not a dictionary")

    index = {}
    for name, package in record.items():
        pkg = Package.from_plist(package)
        if not pkg.sha256:
            raise FormatError(f"{name}: package record is missing 'filename-sha256'")
        index[name] = pkg

    return index


def _parse_files(buf: bytes) -> Files:
    record = _decode_plist(buf, FILES_NAME)
    if not isinstance(record, dict):
        raise FormatError(f"{FILES_NAME} is not a dictionary")

    try:
        return Files(
            dirs=[
                ManifestEntry(EntryKind.DIRECTORY, item["file"])
                for item in record.get("dirs", [])
            ],
            files=[
                ManifestEntry(
                    EntryKind.FILE,
                    item["file"],
                    mtime=int(item.get("mtime", 0)),
                    sha256=item.get("sha256"),
                )
                for item in record.get("files", [])
            ],
            links=[
                ManifestEntry(
                    EntryKind.SYMLINK,
                    item["file"],
                    mtime=int(item.get("mtime", 0)),
                    target=item.get("target"),
                )
                for item in record.get("links", [])
            ],
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise FormatError(f"invalid {FILES_NAME}: {e!r}") from e


def parse_repodata(fileobj: IO[bytes]) -> tuple[MetaData | None, Index]:
    """Reads a repository index

    Args:
        fileobj: Binary stream positioned at the start of the repodata file

    Returns:
        tuple: The signing metadata (None for unsigned repositories) and the package index

    Raises:
        FormatError: If the stream is not a gzip compressed tar or a record cannot be decoded
        MissingIndexError: If there is no index.plist in the stream
    """
    meta = None
    index = None

    try:
        with tarfile.open(fileobj=fileobj, mode="r|gz") as ar:
            for member in ar:
                if member.name not in (INDEX_NAME, INDEX_META_NAME) or not member.isfile():
                    continue

                buf = ar.extractfile(member).read()
                if member.name == INDEX_META_NAME:
                    meta = _parse_metadata(buf)
                else:
                    index = _parse_index(buf)
    except (tarfile.TarError, EOFError) as e:
        raise FormatError(f"read repodata: {e}") from e

    if index is None:
        raise MissingIndexError(f"missing {INDEX_NAME} in repodata")

    return meta, index


def open_archive(fileobj: IO[bytes]) -> tarfile.TarFile:
    """Opens a package archive for sequential reading from the current offset

    Raises:
        FormatError: If the stream is not an xz compressed tar
    """
    try:
        return tarfile.open(fileobj=fileobj, mode="r|xz")
    except (tarfile.TarError, EOFError) as e:
        raise FormatError(f"open package: {e}") from e


def _read_member(fileobj: IO[bytes], wanted: str) -> bytes:
    with open_archive(fileobj) as ar:
        try:
            for member in ar:
                if member.name == wanted:
                    return ar.extractfile(member).read()
        except (tarfile.TarError, EOFError) as e:
            raise FormatError(f"read package: {e}") from e

    raise FormatError(f"no {wanted!r} in package")


def read_files(fileobj: IO[bytes]) -> Files:
    """Reads the manifest of every directory, file and link a package installs"""
    return _parse_files(_read_member(fileobj, FILES_NAME))


def read_properties(fileobj: IO[bytes]) -> Package:
    """Reads the package properties stored in the archive itself"""
    return Package.from_plist(_decode_plist(_read_member(fileobj, PROPS_NAME), PROPS_NAME))


def match_files(files: Files, prefix: str) -> list[str]:
    """Lists the files, then the links, of a manifest found below prefix

    Directories are never returned, only leaf entries can be extracted.
    """
    matched = [entry.name for entry in files.files if entry.name.startswith(prefix)]
    matched += [entry.name for entry in files.links if entry.name.startswith(prefix)]
    return matched
