from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from pathlib import Path

import AMT_Main as AMain


class PatchState(Enum):
    CURRENT = auto()
    """version.json matches steam.inf"""
    DRIFTED = auto()
    """version.json differs from steam.inf, Dota updated since the last patch"""
    ASSUMED_CURRENT = auto()
    """No usable version.json, but the VPK and gameinfo marker are both in place"""
    NOT_PATCHED = auto()
    """No usable version.json and the mod artifacts are not in place"""


@dataclass(frozen=True)
class VersionInfo:
    current_version: str = AMain.UNKNOWN
    current_build: str = AMain.UNKNOWN
    last_patched_version: str | None = None
    last_patched_build: str | None = None
    last_patched_date: datetime | None = None
    current_digest: str = ""
    cached_digest: str | None = None
    game_info_hash: str = ""
    cached_game_info_hash: str | None = None
    game_info_has_mod_entry: bool = False
    state: PatchState = PatchState.NOT_PATCHED

    @property
    def digest_changed(self) -> bool:
        # An empty cache reads as "changed"; AMT_Status decides when to trust this.
        if self.cached_digest is None:
            return True
        return self.current_digest.casefold() != self.cached_digest.casefold()

    @property
    def game_info_changed(self) -> bool:
        """Marker gone, or gameinfo edited since the last patch (only when a hash was cached)."""
        if not self.game_info_has_mod_entry:
            return True
        return bool(self.cached_game_info_hash) and self.cached_game_info_hash != self.game_info_hash

    @property
    def matches(self) -> bool:
        return self.state in {PatchState.CURRENT, PatchState.ASSUMED_CURRENT}

    @property
    def display_version(self) -> str:
        return f"{self.current_version} (Build {self.current_build})"

    @property
    def needs_repatch(self) -> bool:
        return self.digest_changed or not self.game_info_has_mod_entry


def game_info_has_marker(game_info_path: Path) -> bool:
    if not game_info_path.is_file():
        return False
    content = AMain.read_text_fresh(game_info_path)
    return AMain.GAMEINFO_MARKER.casefold() in content.casefold()


def reconcile(target_path: Path | str) -> VersionInfo:
    """Work out whether the installed patch matches the running Dota build.

    steam.inf is the ground truth. version.json is compared against it when it parses,
    a corrupt version.json counts as missing, and with no usable cache the VPK plus the
    gameinfo marker are taken as proof of an active patch.

    Raises PathInvalidError when steam.inf is missing or unreadable.
    """
    target_path = Path(target_path)
    AMain.logger.debug(f"- - - INITIATED VERSION RECONCILE FOR {target_path}")

    descriptor = AMain.read_version_descriptor(target_path / AMain.STEAM_INF)
    if not descriptor.found:
        raise AMain.PathInvalidError(f"steam.inf not found in '{target_path}', Dota 2 path invalid")

    game_info_path = target_path / AMain.GAME_INFO
    game_info_content = AMain.read_text_fresh(game_info_path) if game_info_path.is_file() else ""
    has_mod_entry = AMain.GAMEINFO_MARKER.casefold() in game_info_content.casefold()
    cache = AMain.read_patch_cache(target_path / AMain.VERSION_JSON)
    legacy = AMain.read_legacy_cache(target_path / AMain.VERSION_CACHE)

    if cache.found and not cache.corrupt:
        if cache.version == descriptor.version and cache.build == descriptor.build:
            state = PatchState.CURRENT
        else:
            state = PatchState.DRIFTED
            AMain.logger.info(
                f"- - - Dota updated since last patch: {descriptor.version} (Build {descriptor.build})"
                f" vs patched {cache.version} (Build {cache.build})"
            )
        patched_version, patched_build, patched_date = cache.version, cache.build, cache.date
    else:
        # TODO: compare the legacy cache Build against steam.inf before trusting the artifacts.
        vpk_exists = (target_path / AMain.MODS_VPK).is_file()
        state = PatchState.ASSUMED_CURRENT if vpk_exists and has_mod_entry else PatchState.NOT_PATCHED
        patched_version, patched_build, patched_date = legacy.version, legacy.build, legacy.date

    return VersionInfo(
        current_version=descriptor.version,
        current_build=descriptor.build,
        last_patched_version=patched_version,
        last_patched_build=patched_build,
        last_patched_date=patched_date or legacy.date,
        current_digest=AMain.read_digest(target_path / AMain.SIGNATURES),
        cached_digest=legacy.digest,
        game_info_hash=AMain.hash_game_info(game_info_content),
        cached_game_info_hash=legacy.game_info_hash,
        game_info_has_mod_entry=has_mod_entry,
        state=state,
    )


def _truncate(value: str | None, max_length: int) -> str:
    if not value:
        return "N/A"
    return value if len(value) <= max_length else f"{value[:max_length]}..."


def format_change_summary(info: VersionInfo) -> str:
    """Plain text report of what changed since the last patch, for consoles and logs."""
    rule = "═" * 43
    thin_rule = "─" * 43
    message_list = [
        f"{rule}\n",
        "            VERSION STATUS\n",
        f"{rule}\n\n",
        f"Current Dota 2:  {info.display_version}\n",
    ]
    if info.last_patched_version is not None:
        message_list.append(f"Last Patched:    {info.last_patched_version}\n")
    if info.last_patched_date is not None:
        message_list.append(f"Patch Date:      {info.last_patched_date:%b %d, %Y %H:%M}\n")
    message_list.extend(["\n", f"{thin_rule}\n", "CHANGES DETECTED:\n", f"{thin_rule}\n\n", "Core files:\n"])

    if not info.current_digest:
        message_list.append("  └─ Status: FILE NOT FOUND\n")
    elif info.digest_changed:
        message_list.extend([
            f"  ├─ DIGEST: {_truncate(info.cached_digest or 'None', 12)} → {_truncate(info.current_digest, 12)}\n",
            "  └─ Status: CHANGED - Needs re-patch\n",
        ])
    else:
        message_list.extend([
            f"  ├─ DIGEST: {_truncate(info.current_digest, 20)}\n",
            "  └─ Status: OK - No changes\n",
        ])

    message_list.append("\nGame config:\n")
    mod_entry = AMain.MODS_FOLDER.rsplit("/", 1)[-1]
    if not info.game_info_has_mod_entry:
        message_list.extend([f"  ├─ {mod_entry} entry: MISSING\n", "  └─ Status: NEEDS PATCH\n"])
    elif info.game_info_changed:
        message_list.extend([f"  ├─ {mod_entry} entry: Present\n", "  └─ Status: MODIFIED - May need re-patch\n"])
    else:
        message_list.extend([f"  ├─ {mod_entry} entry: Present\n", "  └─ Status: OK\n"])

    message_list.append(f"\n{thin_rule}\n")
    if info.needs_repatch:
        message_list.append("RESULT: Re-patch required\n")
    else:
        message_list.append("RESULT: All files OK - No action needed\n")
    message_list.append(f"{rule}\n")
    return "".join(message_list)
