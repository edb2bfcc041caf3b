import contextlib
import datetime
import hashlib
import json
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum, auto
from functools import reduce
from io import TextIOWrapper
from pathlib import Path

import chardet
import regex as re
import ruamel.yaml

""" AUTHOR NOTES:
    ❓ Every path below is relative to the Dota 2 install folder and uses forward slashes.
    ❓ Game files are read fresh on every call. Nothing here caches file contents across checks.
    ❓ Only PathInvalidError is allowed to escape a verification run, everything else becomes a check result.
"""

type YAMLLiteral = str | int | float | bool
type YAMLSequence = list[str]
type YAMLMapping = dict[str, "YAMLValue"]
type YAMLValue = YAMLMapping | YAMLSequence | YAMLLiteral

# ================================================
# DOTA PATHS & MARKERS
# ================================================
MODS_FOLDER = "game/_ArdysaMods"
MODS_VPK = "game/_ArdysaMods/pak01_dir.vpk"
MODS_VERSION = "game/_ArdysaMods/version.txt"
VERSION_CACHE = "game/_ArdysaMods/_temp/version_cache.txt"
VERSION_JSON = "game/_ArdysaMods/_temp/version.json"
STEAM_INF = "game/dota/steam.inf"
SIGNATURES = "game/bin/win64/dota.signatures"
GAME_INFO = "game/dota/gameinfo_branchspecific.gi"
DOTA2_EXE = "game/bin/win64/dota2.exe"

GAMEINFO_MARKER = "_Ardysa"
MOD_PATCH_SHA1 = "1A9B91FB43FE89AD104B8001282D292EED94584D"
MOD_PATCH_LINE = rf"...\..\..\dota\gameinfo_branchspecific.gi~SHA1:{MOD_PATCH_SHA1};CRC:043F604A"

UNKNOWN = "Unknown"

DEFAULT_SETTINGS = """AMT_Settings:
  # Dota 2 install folder (the one containing the game/ directory).
  Dota Path:
  # Seconds to pause between verification steps so progress stays readable. Use 0 for scripts.
  Verify Step Delay: 0.2
  # debug | info | warning | error | critical
  Log Level: info
"""

SETTINGS_IGNORE_NONE = {
    "Dota Path",
}


class YAML(Enum):
    Settings = auto()
    """AMT Settings.yaml"""
    TEST = auto()
    """tests/test_settings.yaml"""


# ================================================
# ERRORS
# ================================================
class ErrorCodes:
    """Error codes follow CATEGORY_XXX so they can be grepped out of the journal."""

    CFG_INVALID_PATH = "CFG_002"
    CFG_READ_FAILED = "CFG_004"


class AMTError(Exception):
    """Base error for AMT, always tagged with an error code."""

    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(f"[{error_code}] {message}")
        self.error_code = error_code


class PathInvalidError(AMTError):
    """The Dota 2 version descriptor could not be read, so nothing else can be verified."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCodes.CFG_INVALID_PATH, message)


logger = logging.getLogger()


@contextlib.contextmanager
def open_file_with_encoding(file_path: Path | str | os.PathLike) -> Iterator[TextIOWrapper]:
    """Read only file open with encoding detection. Only for text files."""
    if not isinstance(file_path, Path):
        file_path = Path(file_path)
    raw_data = file_path.read_bytes()
    encoding = chardet.detect(raw_data)["encoding"] or "utf-8"

    file_handle = file_path.open(encoding=encoding, errors="ignore")
    try:
        yield file_handle
    finally:
        file_handle.close()


def read_text_fresh(file_path: Path) -> str:
    """Read the whole file from disk every call. Game files may be UTF-16."""
    with open_file_with_encoding(file_path) as text_file:
        return text_file.read()


def hash_game_info(content: str) -> str:
    """Short SHA-256 fingerprint of the gameinfo text, as stored in version_cache.txt."""
    if not content:
        return ""
    return hashlib.sha256(content.encode("utf-8")).hexdigest().upper()[:16]


def configure_logging() -> None:
    """Configure log output to `AMT Journal.log`, regenerating if older than 7 days.

    Logging levels: debug | info | warning | error | critical.
    """
    global logger  # noqa: PLW0603

    journal_path = Path("AMT Journal.log")
    if journal_path.exists():
        logger.debug("- - - INITIATED LOGGING CHECK")
        log_time = datetime.datetime.fromtimestamp(journal_path.stat().st_mtime)
        current_time = datetime.datetime.now()
        log_age = current_time - log_time
        if log_age.days > 7:
            try:
                journal_path.unlink(missing_ok=True)
                print("AMT Journal.log has been deleted and regenerated due to being older than 7 days.")
            except (ValueError, OSError) as err:
                print(f"An error occurred while deleting {journal_path.name}: {err}")

    # Make sure we only configure the handler once
    if "AMT" not in logging.Logger.manager.loggerDict:
        logger = logging.getLogger("AMT")
        logger.setLevel(logging.INFO)
        handler = logging.FileHandler(
            filename="AMT Journal.log",
            mode="a",
        )
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        logger.addHandler(handler)


# ================================================
# DEFINE YAML SETTINGS FUNCTIONS
# ================================================
class YamlSettingsCache:
    def __init__(self) -> None:
        self.cache: dict[Path, YAMLMapping] = {}
        self.file_mod_times: dict[Path, float] = {}

    def load_yaml(self, yaml_path: str | os.PathLike) -> YAMLMapping:
        yaml_path = Path(yaml_path)
        if yaml_path.exists():
            # Reload only when the file changed on disk since it was cached
            last_mod_time = yaml_path.stat().st_mtime
            if (yaml_path not in self.file_mod_times or
                self.file_mod_times[yaml_path] != last_mod_time):

                self.file_mod_times[yaml_path] = last_mod_time

                with yaml_path.open(encoding="utf-8") as yaml_file:
                    yaml = ruamel.yaml.YAML()
                    yaml.indent(offset=2)
                    yaml.width = 300
                    self.cache[yaml_path] = yaml.load(yaml_file) or {}

        return self.cache.get(yaml_path, {})

    def get_setting[T](self, _type: type[T], yaml_store: YAML, key_path: str, new_value: T | None = None) -> T | None:
        match yaml_store:
            case YAML.Settings:
                yaml_path = Path("AMT Settings.yaml")
            case YAML.TEST:
                yaml_path = Path("tests/test_settings.yaml")
            case _:
                raise NotImplementedError

        data = self.load_yaml(yaml_path)
        keys = key_path.split(".")

        def setdefault(dictionary: dict[str, YAMLValue], key: str) -> dict[str, YAMLValue]:
            if dictionary.get(key) is None:
                dictionary[key] = {}
            next_value = dictionary[key]
            if not isinstance(next_value, dict):
                raise TypeError
            return next_value

        setting_container = reduce(setdefault, keys[:-1], data)

        if new_value is not None:
            setting_container[keys[-1]] = new_value  # type: ignore[assignment]

            with yaml_path.open("w", encoding="utf-8") as yaml_file:
                yaml = ruamel.yaml.YAML()
                yaml.indent(offset=2)
                yaml.width = 300
                yaml.dump(data, yaml_file)

            self.cache[yaml_path] = data
            self.file_mod_times[yaml_path] = yaml_path.stat().st_mtime
            return new_value

        setting_value = setting_container.get(keys[-1])
        if setting_value is None and keys[-1] not in SETTINGS_IGNORE_NONE:
            logger.warning(f"> > > WARNING (yaml_settings) : Trying to grab a None value for : '{key_path}'")
        return setting_value  # type: ignore[return-value]


def yaml_settings[T](_type: type[T], yaml_store: YAML, key_path: str, new_value: T | None = None) -> T | None:
    if yaml_cache is None:
        raise TypeError("AMT_Main not initialized")
    setting = yaml_cache.get_setting(_type, yaml_store, key_path, new_value)
    if _type is Path:
        return Path(setting) if setting and isinstance(setting, str) else None  # type: ignore[return-value]
    if _type is float and isinstance(setting, int) and not isinstance(setting, bool):
        return float(setting)  # type: ignore[return-value]
    return setting


def amt_settings[T](_type: type[T], setting: str, new_value: T | None = None) -> T | None:
    settings_path = Path("AMT Settings.yaml")
    if not settings_path.exists():
        settings_path.write_text(DEFAULT_SETTINGS, encoding="utf-8")

    return yaml_settings(_type, YAML.Settings, f"AMT_Settings.{setting}", new_value)


def verify_step_delay() -> float:
    """Pause between verification steps, falling back to the default on a bad value."""
    delay = amt_settings(float, "Verify Step Delay")
    if not isinstance(delay, float) or delay < 0:
        return 0.2
    return delay


# ================================================
# GAME FILE READERS
# ================================================
@dataclass(frozen=True)
class VersionDescriptor:
    version: str = UNKNOWN
    build: str = UNKNOWN
    found: bool = False


@dataclass(frozen=True)
class PatchCache:
    version: str | None = None
    build: str | None = None
    date: datetime.datetime | None = None
    found: bool = False
    corrupt: bool = False


@dataclass(frozen=True)
class LegacyCache:
    version: str | None = None
    build: str | None = None
    digest: str | None = None
    game_info_hash: str | None = None
    date: datetime.datetime | None = None


def _parse_datetime(value: object) -> datetime.datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.datetime.fromisoformat(value.strip())
    except ValueError:
        return None


def read_version_descriptor(steam_inf_path: Path) -> VersionDescriptor:
    """Pull `VersionDate=` and `ClientVersion=` out of steam.inf.

    Missing fields resolve to "Unknown". A file that exists but can't be read raises PathInvalidError.
    """
    if not steam_inf_path.is_file():
        return VersionDescriptor()
    try:
        content = read_text_fresh(steam_inf_path)
    except OSError as err:
        raise PathInvalidError(f"steam.inf could not be read: {err}") from err

    date_match = re.search(r"VersionDate=(.+)", content)
    build_match = re.search(r"ClientVersion=(\d+)", content)
    version = date_match.group(1).strip() if date_match else UNKNOWN
    build = build_match.group(1) if build_match else UNKNOWN
    return VersionDescriptor(version=version or UNKNOWN, build=build, found=True)


def read_patch_cache(version_json_path: Path) -> PatchCache:
    """Read version.json written after the last successful patch.

    Anything that does not parse into a JSON object is reported as corrupt, never raised.
    """
    if not version_json_path.is_file():
        return PatchCache()
    try:
        data = json.loads(read_text_fresh(version_json_path))
    except (OSError, ValueError) as err:
        logger.debug(f"- - - version.json unreadable, treating as absent: {err}")
        return PatchCache(found=True, corrupt=True)
    if not isinstance(data, dict):
        logger.debug("- - - version.json is not an object, treating as absent")
        return PatchCache(found=True, corrupt=True)

    version = data.get("VersionDate", "")
    build = data.get("Build", "")
    if not (isinstance(version, str) and isinstance(build, str)):
        logger.debug("- - - version.json fields are not strings, treating as absent")
        return PatchCache(found=True, corrupt=True)
    return PatchCache(
        version=version,
        build=build,
        date=_parse_datetime(data.get("PatchedAt")),
        found=True,
    )


def read_legacy_cache(version_cache_path: Path) -> LegacyCache:
    """Read the older `key=value` version_cache.txt format."""
    if not version_cache_path.is_file():
        return LegacyCache()
    try:
        lines = read_text_fresh(version_cache_path).splitlines()
    except OSError as err:
        logger.debug(f"- - - version_cache.txt unreadable, treating as absent: {err}")
        return LegacyCache()

    values: dict[str, str] = {}
    for line in lines:
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()

    return LegacyCache(
        version=values.get("Version"),
        build=values.get("Build"),
        digest=values.get("Digest"),
        game_info_hash=values.get("GameInfoHash"),
        date=_parse_datetime(values.get("PatchDate")),
    )


def read_digest(signatures_path: Path) -> str:
    if not signatures_path.is_file():
        return ""
    try:
        content = read_text_fresh(signatures_path)
    except OSError:
        return ""
    match = re.search(r"DIGEST:([A-F0-9]+)", content)
    return match.group(1) if match else ""


def write_patch_cache(target_path: Path) -> Path:
    """Record the current steam.inf version in version.json. Called by the patcher after a successful patch."""
    descriptor = read_version_descriptor(target_path / STEAM_INF)
    if not descriptor.found:
        raise AMTError(ErrorCodes.CFG_READ_FAILED, f"steam.inf not found in '{target_path}', patched version not saved")
    json_path = target_path / VERSION_JSON
    json_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "VersionDate": descriptor.version,
        "Build": descriptor.build,
        "PatchedAt": datetime.datetime.now().isoformat(),
    }
    json_path.write_text(json.dumps(payload), encoding="utf-8")
    logger.info(f"- - - Saved patched version {descriptor.version} (Build {descriptor.build}) to {json_path}")
    return json_path


def format_file_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


yaml_cache: YamlSettingsCache | None = None


def initialize() -> None:
    global yaml_cache  # noqa: PLW0603

    yaml_cache = YamlSettingsCache()
    configure_logging()
    log_level = amt_settings(str, "Log Level")
    if isinstance(log_level, str) and log_level.upper() in logging.getLevelNamesMapping():
        logger.setLevel(log_level.upper())
