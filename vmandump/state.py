import os
import json

from .errors import StateCorruptError

State = dict[str, list[str]]


def load_state(file_location: str) -> State:
    """Loads the paths extracted by previous runs, keyed by package sha256

    Args:
        file_location (str): Location of the state file

    Returns:
        State: Previous state, empty if the file does not exist yet

    Raises:
        StateCorruptError: If the file cannot be read or decoded
    """
    try:
        with open(file_location) as f:
            contents = json.load(f)
    except FileNotFoundError:
        return {}
    except OSError as error:
        raise StateCorruptError(f"read state: {file_location!r}: {error}") from error
    except ValueError as error:
        raise StateCorruptError(
            f"State file @ {file_location} is corrupted! Please delete it and try again. ({error})"
        ) from error

    if not isinstance(contents, dict):
        raise StateCorruptError(
            f"State file @ {file_location} must map package hashes to lists of paths"
        )

    state = {}
    for sha256, paths in contents.items():
        # Packages without pages are stored as null by older versions
        if paths is None:
            paths = []

        if not isinstance(paths, list) or not all(isinstance(path, str) for path in paths):
            raise StateCorruptError(
                f"State file @ {file_location} must map package hashes to lists of paths"
            )
        state[sha256] = paths

    return state


def save_state(file_location: str, state: State) -> None:
    """Replaces the state file with the given state

    Raises:
        OSError: If the file cannot be written
    """
    temp_location = file_location + ".tmp"
    with open(temp_location, "w", newline="\n") as f:
        json.dump(state, f, indent=4)
        f.write("\n")

    os.replace(temp_location, file_location)
