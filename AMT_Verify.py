import asyncio
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from functools import partial
from pathlib import Path

import AMT_Main as AMain
import AMT_Version as AVersion


class CheckId(Enum):
    """Verification checks in the order they run. Later checks assume earlier ones set up their preconditions."""

    MOD_PACKAGE = 0
    DOTA_VERSION = 1
    GAME_PATCH = 2
    MOD_INTEGRATION = 3


CHECK_NAMES: dict[CheckId, str] = {
    CheckId.MOD_PACKAGE: "Mod Package",
    CheckId.DOTA_VERSION: "Dota Version",
    CheckId.GAME_PATCH: "Game Patch",
    CheckId.MOD_INTEGRATION: "Mod Integration",
}


@dataclass(frozen=True)
class CheckResult:
    passed: bool
    detail: str = ""


@dataclass(frozen=True)
class VerificationCheck:
    index: int
    check_id: CheckId
    name: str
    execute: Callable[[], Awaitable[CheckResult]] = field(compare=False)


class StepPhase(Enum):
    STARTED = auto()
    COMPLETED = auto()


@dataclass(frozen=True)
class StepEvent:
    index: int
    name: str
    phase: StepPhase
    result: CheckResult | None = None


@dataclass(frozen=True)
class VerificationSummary:
    passed_count: int
    total_count: int
    cancelled: bool = False

    @property
    def all_passed(self) -> bool:
        return self.passed_count == self.total_count

    def offers_patch(self, patch_available: bool) -> bool:
        return patch_available and not self.all_passed


type VerificationEvent = StepEvent | VerificationSummary


# ================================================
# CHECK FUNCTIONS
# ================================================
async def check_mod_package(target_path: Path) -> CheckResult:
    vpk_path = target_path / AMain.MODS_VPK
    if vpk_path.is_file():
        return CheckResult(True, f"{vpk_path.name} ({AMain.format_file_size(vpk_path.stat().st_size)})")
    return CheckResult(False, "VPK not found — install modspack first")


async def check_dota_version(target_path: Path) -> CheckResult:
    info = AVersion.reconcile(target_path)
    match info.state:
        case AVersion.PatchState.CURRENT | AVersion.PatchState.ASSUMED_CURRENT:
            return CheckResult(True, info.display_version)
        case AVersion.PatchState.DRIFTED:
            patched = f"{info.last_patched_version} (Build {info.last_patched_build})"
            return CheckResult(False, f"Dota updated: {info.display_version} ≠ patched {patched}")
        case _:
            return CheckResult(False, "Not patched — run Patch Update")


async def check_game_patch(target_path: Path) -> CheckResult:
    signatures_path = target_path / AMain.SIGNATURES
    if signatures_path.is_file():
        return CheckResult(True, f"Signatures present ({AMain.format_file_size(signatures_path.stat().st_size)})")
    return CheckResult(False, "dota.signatures missing")


async def check_mod_integration(target_path: Path) -> CheckResult:
    game_info_path = target_path / AMain.GAME_INFO
    signatures_path = target_path / AMain.SIGNATURES
    if not (game_info_path.is_file() and signatures_path.is_file()):
        return CheckResult(False, "Core game files missing")

    has_marker = AMain.GAMEINFO_MARKER.casefold() in AMain.read_text_fresh(game_info_path).casefold()
    has_format = AMain.MOD_PATCH_LINE in AMain.read_text_fresh(signatures_path)

    if has_marker and has_format:
        return CheckResult(True, "GameInfo + Signatures valid")
    if has_marker:
        return CheckResult(False, "Signature format invalid — re-patch required")
    return CheckResult(False, "Mod entry not in GameInfo")


CHECK_FUNCTIONS: dict[CheckId, Callable[[Path], Awaitable[CheckResult]]] = {
    CheckId.MOD_PACKAGE: check_mod_package,
    CheckId.DOTA_VERSION: check_dota_version,
    CheckId.GAME_PATCH: check_game_patch,
    CheckId.MOD_INTEGRATION: check_mod_integration,
}


def build_checks(target_path: Path | str) -> tuple[VerificationCheck, ...]:
    """Build a fresh, ordered set of checks bound to `target_path`.

    Raises KeyError if a CheckId has no check function registered.
    """
    target_path = Path(target_path)
    return tuple(
        VerificationCheck(
            index=check_id.value,
            check_id=check_id,
            name=CHECK_NAMES[check_id],
            execute=partial(CHECK_FUNCTIONS[check_id], target_path),
        )
        for check_id in sorted(CheckId, key=lambda c: c.value)
    )


# ================================================
# RUNNER
# ================================================
async def run_checks(
    checks: tuple[VerificationCheck, ...] | list[VerificationCheck],
    *,
    step_delay: float = 0.0,
    cancelled: Callable[[], bool] | None = None,
) -> AsyncIterator[VerificationEvent]:
    """Run `checks` one at a time, yielding a STARTED and a COMPLETED event for each.

    A check that raises is reported as failed and the run moves on. The stream ends with a
    VerificationSummary, unless `cancelled()` turns true, in which case it just stops.
    """
    is_cancelled = cancelled or (lambda: False)
    passed = 0
    for check in checks:
        if is_cancelled():
            AMain.logger.info(f"- - - Verification cancelled before {check.name}")
            return

        yield StepEvent(check.index, check.name, StepPhase.STARTED)
        if step_delay > 0:
            await asyncio.sleep(step_delay)

        try:
            result = await check.execute()
        except Exception as err:  # noqa: BLE001
            AMain.logger.warning(f"> > > ERROR ({check.name}) : {err}")
            result = CheckResult(False, f"Error: {err}")

        if result.passed:
            passed += 1
        else:
            AMain.logger.warning(f"> > > {check.name} failed : {result.detail}")
        yield StepEvent(check.index, check.name, StepPhase.COMPLETED, result)

        if is_cancelled():
            AMain.logger.info(f"- - - Verification cancelled after {check.name}")
            return
        if step_delay > 0:
            await asyncio.sleep(step_delay * 0.75)

    yield VerificationSummary(passed, len(checks))


async def run_all(
    checks: tuple[VerificationCheck, ...] | list[VerificationCheck],
    on_start: Callable[[int], None],
    on_complete: Callable[[int, CheckResult], None],
    *,
    step_delay: float = 0.0,
    cancelled: Callable[[], bool] | None = None,
) -> VerificationSummary:
    """Callback flavour of `run_checks()`. A cancelled run returns a partial summary."""
    passed = 0
    async for event in run_checks(checks, step_delay=step_delay, cancelled=cancelled):
        match event:
            case VerificationSummary():
                return event
            case StepEvent(phase=StepPhase.STARTED):
                on_start(event.index)
            case StepEvent(result=CheckResult() as result):
                passed += result.passed
                on_complete(event.index, result)
    return VerificationSummary(passed, len(checks), cancelled=True)


async def run_verification(
    target_path: Path | str,
    *,
    step_delay: float | None = None,
    cancelled: Callable[[], bool] | None = None,
) -> AsyncIterator[VerificationEvent]:
    """Verify the mod installation under `target_path`.

    steam.inf is read before anything else; if it can't be, PathInvalidError is raised
    before the first event and no checks run.
    """
    target_path = Path(target_path)
    AMain.logger.debug(f"- - - INITIATED FILE VERIFICATION FOR {target_path}")
    if not AMain.read_version_descriptor(target_path / AMain.STEAM_INF).found:
        raise AMain.PathInvalidError(f"steam.inf not found in '{target_path}', Dota 2 path invalid")

    if step_delay is None:
        step_delay = AMain.verify_step_delay()

    async for event in run_checks(build_checks(target_path), step_delay=step_delay, cancelled=cancelled):
        if isinstance(event, VerificationSummary):
            AMain.logger.info(f"- - - Verification finished : {event.passed_count}/{event.total_count} checks passed")
        yield event


async def verify_console(target_path: Path) -> int:
    try:
        async for event in run_verification(target_path):
            match event:
                case StepEvent(phase=StepPhase.STARTED):
                    print(f"❓ Checking {event.name}...", flush=True)
                case StepEvent(result=CheckResult(passed=True) as result):
                    print(f"✔️ {event.name} : {result.detail}\n-----", flush=True)
                case StepEvent(result=CheckResult() as result):
                    print(f"❌ {event.name} : {result.detail}\n-----", flush=True)
                case VerificationSummary():
                    print(f"\n{event.passed_count}/{event.total_count} CHECKS PASSED\n")
                    if not event.all_passed:
                        print("Run Patch Update (or reinstall the ModsPack) to fix the failed checks.\n")
        print(AVersion.format_change_summary(AVersion.reconcile(target_path)))
    except AMain.PathInvalidError as err:
        AMain.logger.error(f"> > > ERROR (verify_console) : {err}")
        print(f"❌ ERROR : COULD NOT VERIFY YOUR MOD FILES! {err}")
        print("    Please check your Dota 2 folder and run the setup again.")
        return 1
    return 0


if __name__ == "__main__":  # AKA only autorun / do the following when NOT imported.
    AMain.initialize()
    dota_path = Path(sys.argv[1]) if len(sys.argv) > 1 else AMain.amt_settings(Path, "Dota Path")
    if dota_path is None:
        print("> > > PLEASE SET 'Dota Path' IN AMT Settings.yaml OR PASS THE DOTA 2 FOLDER AS AN ARGUMENT < < <")
        sys.exit(1)
    sys.exit(asyncio.run(verify_console(dota_path)))
