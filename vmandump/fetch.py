import os
import sys
import hashlib

from urllib.parse import urlsplit

import requests

from loguru import logger as default_logger

from .errors import FetchError
from .xbps import Package

TIMEOUT = 60
CHUNK_SIZE = 65536


def is_remote(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def file_checksum(file_location: str) -> str:
    """Returns the sha256 hex digest of a file"""
    digest = hashlib.sha256()
    with open(file_location, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class RepositoryFetcher:
    def __init__(self, cache_dir: str, logger=None) -> None:
        """Downloads repository indices and packages from remote repositories

        Args:
            cache_dir (str): Folder the downloads are kept in
            logger (logger, optional): Logger object for logging. Defaults to the loguru logger.
        """
        self.cache_dir = cache_dir
        self.logger = logger or default_logger

    def cache_folder(self, base_url: str) -> str:
        """Returns the cache folder for a repository url, one per host and path"""
        parts = urlsplit(base_url)
        path = parts.path.strip("/").replace("/", "_") or "_"
        return os.path.join(self.cache_dir, parts.netloc, path)

    def fetch_index(self, url: str) -> str:
        """Downloads a repository index, replacing any cached copy

        Args:
            url (str): Location of the <arch>-repodata file

        Returns:
            str: Location of the downloaded file

        Raises:
            FetchError: If the download fails
        """
        base_url, name = url.rstrip("/").rsplit("/", 1)
        folder = self.cache_folder(base_url)
        os.makedirs(folder, exist_ok=True)

        return self.__download(url, os.path.join(folder, name))

    def fetch_package(self, base_url: str, pkg: Package) -> str:
        """Downloads a package unless an intact copy is cached already

        Args:
            base_url (str): Location of the repository the package belongs to
            pkg (Package): Package to download

        Returns:
            str: Location of the verified package file

        Raises:
            FetchError: If the download fails or the checksum does not match
        """
        folder = self.cache_folder(base_url)
        os.makedirs(folder, exist_ok=True)
        filename = os.path.join(folder, pkg.filename)

        if os.path.exists(filename) and file_checksum(filename) == pkg.sha256:
            self.logger.debug(f"Using cached {filename}")
            return filename

        self.__download(f"{base_url.rstrip('/')}/{pkg.filename}", filename, pkg.size)

        checksum = file_checksum(filename)
        if checksum != pkg.sha256:
            os.remove(filename)
            raise FetchError(
                f"File checksum mismatch for {pkg.filename}! Expected {pkg.sha256}, got {checksum}"
            )

        return filename

    def __download(self, uri: str, filename: str, expected_size: int = 0) -> str:
        self.logger.debug(f"Downloading {uri} to {filename}")

        try:
            response = requests.get(uri, stream=True, timeout=TIMEOUT)
        except requests.exceptions.Timeout as error:
            raise FetchError(f"Connection timed out while downloading {uri}") from error
        except requests.exceptions.RequestException as error:
            raise FetchError(f"Unable to download {uri}: {error}") from error

        with response:
            if response.status_code != 200:
                raise FetchError(f"Unable to download {uri}: {response.status_code}")

            try:
                file_length = int(response.headers.get("content-length", expected_size))
            except ValueError:
                file_length = expected_size

            temp_location = filename + ".part"
            try:
                with open(temp_location, "wb") as out_file:
                    dl = 0

                    for data in response.iter_content(chunk_size=CHUNK_SIZE):
                        dl += len(data)
                        out_file.write(data)
                        if file_length and sys.stderr.isatty():
                            done = min(50, int(50 * dl / file_length))
                            sys.stderr.write("\r[%s%s]" % ("=" * done, " " * (50 - done)))
                            sys.stderr.flush()
            except requests.exceptions.RequestException as error:
                os.remove(temp_location)
                raise FetchError(f"Download of {uri} interrupted: {error}") from error

        if file_length and sys.stderr.isatty():
            sys.stderr.write("\r\n")

        os.replace(temp_location, filename)
        self.logger.debug(f"Downloaded {dl} bytes to {filename}")

        return filename
