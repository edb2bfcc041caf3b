import datetime
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Any

import AMT_Main as AMain
import AMT_Version as AVersion


class ModStatus(Enum):
    READY = "Ready"
    """Mods active and up to date."""
    NEED_UPDATE = "NeedUpdate"
    """Mods active but Dota was updated, needs a re-patch."""
    DISABLED = "Disabled"
    """Mods installed but gameinfo is not patched."""
    NOT_INSTALLED = "NotInstalled"
    """ModsPack VPK is missing."""
    ERROR = "Error"
    """The status check itself could not complete."""

    @property
    def key(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]


STATUS_LABELS: dict[ModStatus, str] = {
    ModStatus.READY: "All Good",
    ModStatus.NEED_UPDATE: "Update Needed",
    ModStatus.DISABLED: "Disabled",
    ModStatus.NOT_INSTALLED: "Not Installed",
    ModStatus.ERROR: "Error",
}

STATUS_DESCRIPTIONS: dict[ModStatus, str] = {
    ModStatus.READY: "your mods are working correctly",
    ModStatus.NEED_UPDATE: "dota updated, mods need re-patching",
    ModStatus.DISABLED: "mods installed but not active",
    ModStatus.NOT_INSTALLED: "modspack is not installed yet",
}


class RecommendedAction(Enum):
    NONE = auto()
    INSTALL = auto()
    UPDATE = auto()
    ENABLE = auto()
    FIX = auto()


@dataclass(frozen=True)
class ModStatusInfo:
    status: ModStatus
    status_text: str = ""
    description: str = ""
    action: RecommendedAction = RecommendedAction.NONE
    action_button_text: str = ""
    version: str | None = None
    last_modified: datetime.datetime | None = None
    error_message: str | None = None


# ================================================
# STATUS EVALUATION
# ================================================
def _read_modspack_version(version_file: Path) -> str | None:
    try:
        if version_file.is_file():
            return AMain.read_text_fresh(version_file).strip() or None
    except OSError as err:
        AMain.logger.debug(f"- - - version.txt unreadable : {err}")
    return None


def _disabled_status(version: str | None, last_modified: datetime.datetime | None) -> ModStatusInfo:
    return ModStatusInfo(
        ModStatus.DISABLED, "Disabled",
        "ModsPack is installed but not active. Click 'Patch Update' to activate.",
        action=RecommendedAction.ENABLE, action_button_text="Patch Update",
        version=version, last_modified=last_modified,
    )


def _check_signatures(
    signatures_file: Path, version: str | None, last_modified: datetime.datetime | None
) -> ModStatusInfo:
    content = AMain.read_text_fresh(signatures_file)
    digest_index = content.find("DIGEST:")
    if digest_index < 0:
        return ModStatusInfo(
            ModStatus.ERROR, "Invalid Core Files",
            "The core files are corrupted. Try reinstalling or verify game files.",
            error_message="DIGEST not found in core files",
        )

    after_digest = content[digest_index:]
    if AMain.MOD_PATCH_LINE in after_digest:
        return ModStatusInfo(
            ModStatus.READY, "Ready",
            "ModsPack is active and up-to-date. Enjoy your game!",
            version=version, last_modified=last_modified,
        )
    # Right SHA1 behind the wrong path: the patch line is malformed, not just stale.
    if f"gameinfo_branchspecific.gi~SHA1:{AMain.MOD_PATCH_SHA1}".casefold() in after_digest.casefold():
        return ModStatusInfo(
            ModStatus.ERROR, "Invalid Patch Format",
            "The patch format is incorrect and may cause matchmaking issues. Please run 'Patch Update' to fix.",
            action=RecommendedAction.FIX, action_button_text="Patch Update",
            error_message="Signature patch line has incorrect path format",
        )
    return ModStatusInfo(
        ModStatus.NEED_UPDATE, "Update Required",
        "Dota 2 was updated. Please run 'Patch Update' to fix.",
        action=RecommendedAction.UPDATE, action_button_text="Patch Update",
        version=version, last_modified=last_modified,
    )


def _check_build_version(
    target_path: Path, ready: ModStatusInfo
) -> ModStatusInfo:
    cache = AMain.read_patch_cache(target_path / AMain.VERSION_JSON)
    if not cache.found or cache.corrupt:
        # Written after the first patch; nothing to compare yet.
        return ready

    descriptor = AMain.read_version_descriptor(target_path / AMain.STEAM_INF)
    if descriptor.version == cache.version and descriptor.build == cache.build:
        return ready

    current = f"{descriptor.version} (Build {descriptor.build})"
    AMain.logger.info(f"- - - Build changed: {cache.version} (Build {cache.build}) → {current}")
    return ModStatusInfo(
        ModStatus.NEED_UPDATE, "Update Required",
        f"Dota 2 was updated ({current}). Run 'Patch Update' to fix.",
        action=RecommendedAction.UPDATE, action_button_text="Patch Update",
        version=ready.version, last_modified=ready.last_modified,
    )


def get_detailed_status(target_path: Path | str | None) -> ModStatusInfo:
    """Evaluate the overall ModsPack status for a Dota 2 folder, one step at a time.

    Each step either returns a final status or lets the next one run:
    install valid -> VPK present -> gameinfo marker -> signatures patch line -> build unchanged.
    """
    AMain.logger.debug("- - - INITIATED MOD STATUS CHECK")
    if not target_path or not str(target_path).strip():
        return ModStatusInfo(
            ModStatus.ERROR, "Path Not Set",
            "Please detect or select your Dota 2 folder.",
            error_message="Dota 2 path not set",
        )
    target_path = Path(target_path)

    try:
        if not (target_path / AMain.DOTA2_EXE).is_file():
            return ModStatusInfo(
                ModStatus.ERROR, "Invalid Path",
                "dota2.exe not found. Please select a valid Dota 2 folder.",
                error_message=f"Missing {AMain.DOTA2_EXE}",
            )
        signatures_file = target_path / AMain.SIGNATURES
        if not signatures_file.is_file():
            return ModStatusInfo(
                ModStatus.ERROR, "Error",
                "Core files are missing. Verify game files in Steam.",
                error_message="Missing core files - run Steam verify",
            )

        vpk_file = target_path / AMain.MODS_VPK
        if not vpk_file.is_file():
            return ModStatusInfo(
                ModStatus.NOT_INSTALLED, "Not Installed",
                "ModsPack is not installed. Click 'Install' to get started.",
                action=RecommendedAction.INSTALL, action_button_text="Install ModsPack",
            )
        version = _read_modspack_version(target_path / AMain.MODS_VERSION)
        last_modified = datetime.datetime.fromtimestamp(vpk_file.stat().st_mtime)

        if not AVersion.game_info_has_marker(target_path / AMain.GAME_INFO):
            return _disabled_status(version, last_modified)

        signature_status = _check_signatures(signatures_file, version, last_modified)
        if signature_status.status is not ModStatus.READY:
            return signature_status

        try:
            return _check_build_version(target_path, signature_status)
        except (OSError, AMain.AMTError) as err:
            # A failed comparison never blocks a Ready status.
            AMain.logger.warning(f"> > > WARNING (build version check) : {err}")
            return signature_status

    except OSError as err:
        AMain.logger.error(f"> > > ERROR (get_detailed_status) : {err}")
        return ModStatusInfo(
            ModStatus.ERROR, "Error",
            f"Failed to check status: {err}",
            error_message=str(err),
        )


# ================================================
# DIAGNOSTICS
# ================================================
@dataclass(frozen=True)
class DiagnosticsPayload:
    digest_ok: bool | None
    game_info_ok: bool | None
    version_mismatch: bool
    patch_date: str
    patched_version: str
    show_patch_button: bool
    status: str = ModStatus.NOT_INSTALLED.key
    status_text: str = ""
    description: str = ""
    patch_button_text: str = "Apply Patches"
    dota_version: str = AMain.UNKNOWN
    build_number: str = AMain.UNKNOWN
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "statusText": self.status_text,
            "description": self.description,
            "showPatchBtn": self.show_patch_button,
            "patchBtnText": self.patch_button_text,
            "dotaVersion": self.dota_version,
            "buildNumber": self.build_number,
            "patchedVersion": self.patched_version,
            "patchDate": self.patch_date,
            "versionMismatch": self.version_mismatch,
            "digestOk": self.digest_ok,
            "gameInfoOk": self.game_info_ok,
            "errorMessage": self.error_message,
        }


def derive_diagnostics(
    status_info: ModStatusInfo,
    version_info: AVersion.VersionInfo,
    on_patch_requested: Callable[[], None] | None = None,
) -> DiagnosticsPayload:
    """Turn the overall status plus raw version data into the flags the status view shows.

    The status wins over raw fields: READY is always healthy (an empty version cache must not
    look broken), NOT_INSTALLED is unknown rather than failing, and only the remaining statuses
    fall back to the raw digest/gameinfo readings.
    """
    status = status_info.status

    match status:
        case ModStatus.READY:
            digest_ok, game_info_ok = True, True
        case ModStatus.NOT_INSTALLED:
            digest_ok, game_info_ok = None, None
        case _:
            digest_ok = not version_info.digest_changed
            game_info_ok = version_info.game_info_has_mod_entry

    version_mismatch = (
        status is not ModStatus.READY
        and version_info.last_patched_version is not None
        and version_info.last_patched_version != version_info.current_version
    )

    if version_info.last_patched_date is not None:
        patch_date = f"{version_info.last_patched_date:%b %d, %Y}"
    else:
        patch_date = "Up to date" if status is ModStatus.READY else "Never"

    if version_info.last_patched_version is not None:
        patched_version = version_info.last_patched_version
    else:
        patched_version = version_info.current_version if status is ModStatus.READY else "--"

    show_patch_button = on_patch_requested is not None and status in {ModStatus.NEED_UPDATE, ModStatus.DISABLED}

    if status_info.description:
        description = status_info.description
    elif status is ModStatus.ERROR:
        description = status_info.error_message or "an error occurred"
    else:
        description = STATUS_DESCRIPTIONS[status]

    return DiagnosticsPayload(
        digest_ok=digest_ok,
        game_info_ok=game_info_ok,
        version_mismatch=version_mismatch,
        patch_date=patch_date,
        patched_version=patched_version,
        show_patch_button=show_patch_button,
        status=status.key,
        status_text=status_info.status_text or status.label,
        description=description,
        patch_button_text=status_info.action_button_text or "Apply Patches",
        dota_version=version_info.current_version,
        build_number=version_info.current_build,
        error_message=status_info.error_message if status is ModStatus.ERROR else None,
    )


get_diagnostics = derive_diagnostics
