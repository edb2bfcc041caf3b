import json
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

import AMT_Main
import AMT_Verify
import AMT_Version
from AMT_Verify import CheckId, CheckResult, StepEvent, StepPhase, VerificationCheck, VerificationSummary
from tests.conftest import write_file


async def collect(stream: AsyncIterator[AMT_Verify.VerificationEvent]) -> list[AMT_Verify.VerificationEvent]:
    return [event async for event in stream]


def completed_results(events: list[AMT_Verify.VerificationEvent]) -> list[CheckResult]:
    return [e.result for e in events if isinstance(e, StepEvent) and e.result is not None]


def test_build_checks(dota_path: Path) -> None:
    """Test AMT_Verify's `build_checks()` covers every check id once and in order."""
    checks = AMT_Verify.build_checks(dota_path)
    assert [c.check_id for c in checks] == list(CheckId)
    assert [c.index for c in checks] == [0, 1, 2, 3]
    assert [c.name for c in checks] == ["Mod Package", "Dota Version", "Game Patch", "Mod Integration"]
    assert set(AMT_Verify.CHECK_FUNCTIONS) == set(CheckId), "every CheckId needs a registered function"


def test_build_checks_missing_function(dota_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A check id with no function fails when the checks are built, not silently during the run."""
    monkeypatch.delitem(AMT_Verify.CHECK_FUNCTIONS, CheckId.GAME_PATCH)
    with pytest.raises(KeyError):
        AMT_Verify.build_checks(dota_path)


@pytest.mark.asyncio
async def test_run_verification_all_pass(dota_path: Path) -> None:
    """Test AMT_Verify's `run_verification()` on a healthy install."""
    events = await collect(AMT_Verify.run_verification(dota_path, step_delay=0))
    assert len(events) == 9, "4 checks should produce 8 step events and a summary"

    summary = events[-1]
    assert isinstance(summary, VerificationSummary)
    assert summary.passed_count == summary.total_count == 4
    assert summary.all_passed
    assert not summary.offers_patch(patch_available=True), "patch button should stay hidden when everything passes"

    signatures_size = AMT_Main.format_file_size((dota_path / AMT_Main.SIGNATURES).stat().st_size)
    assert completed_results(events) == [
        CheckResult(True, "pak01_dir.vpk (2.1 KB)"),
        CheckResult(True, "Oct 15 2026 (Build 6234)"),
        CheckResult(True, f"Signatures present ({signatures_size})"),
        CheckResult(True, "GameInfo + Signatures valid"),
    ]


@pytest.mark.asyncio
async def test_run_verification_event_order(dota_path: Path) -> None:
    """Every check reports STARTED then COMPLETED, in index order."""
    events = await collect(AMT_Verify.run_verification(dota_path, step_delay=0))
    steps = [(e.index, e.phase) for e in events if isinstance(e, StepEvent)]
    expected = [(i, phase) for i in range(4) for phase in (StepPhase.STARTED, StepPhase.COMPLETED)]
    assert steps == expected
    assert all(e.result is None for e in events if isinstance(e, StepEvent) and e.phase is StepPhase.STARTED)


@pytest.mark.asyncio
async def test_run_verification_vpk_missing(dota_path: Path) -> None:
    """A missing VPK fails check 0 and the remaining checks still run."""
    (dota_path / AMT_Main.MODS_VPK).unlink()
    events = await collect(AMT_Verify.run_verification(dota_path, step_delay=0))
    results = completed_results(events)
    assert len(results) == 4
    assert results[0] == CheckResult(False, "VPK not found — install modspack first")
    assert results[1].passed, "version.json still matches steam.inf"
    assert results[2].passed
    assert results[3].passed
    summary = events[-1]
    assert isinstance(summary, VerificationSummary)
    assert (summary.passed_count, summary.total_count) == (3, 4)
    assert summary.offers_patch(patch_available=True)
    assert not summary.offers_patch(patch_available=False)


@pytest.mark.asyncio
async def test_check_dota_version(dota_path: Path) -> None:
    """Test AMT_Verify's `check_dota_version()` across patch states."""
    assert await AMT_Verify.check_dota_version(dota_path) == CheckResult(True, "Oct 15 2026 (Build 6234)")

    write_file(dota_path / AMT_Main.VERSION_JSON, json.dumps({"VersionDate": "Oct 01 2026", "Build": "6200"}))
    assert await AMT_Verify.check_dota_version(dota_path) == CheckResult(
        False, "Dota updated: Oct 15 2026 (Build 6234) ≠ patched Oct 01 2026 (Build 6200)"
    )

    write_file(dota_path / AMT_Main.VERSION_JSON, "garbage{")
    assert await AMT_Verify.check_dota_version(dota_path) == CheckResult(True, "Oct 15 2026 (Build 6234)")

    (dota_path / AMT_Main.MODS_VPK).unlink()
    assert await AMT_Verify.check_dota_version(dota_path) == CheckResult(False, "Not patched — run Patch Update")


@pytest.mark.asyncio
async def test_check_dota_version_build_only_drift(dota_path: Path) -> None:
    """A new build on the same VersionDate names both build numbers."""
    write_file(dota_path / AMT_Main.VERSION_JSON, json.dumps({"VersionDate": "Oct 15 2026", "Build": "6233"}))
    result = await AMT_Verify.check_dota_version(dota_path)
    assert not result.passed
    assert result.detail == "Dota updated: Oct 15 2026 (Build 6234) ≠ patched Oct 15 2026 (Build 6233)"


@pytest.mark.asyncio
async def test_check_mod_integration(dota_path: Path) -> None:
    """Test AMT_Verify's `check_mod_integration()` messages."""
    assert await AMT_Verify.check_mod_integration(dota_path) == CheckResult(True, "GameInfo + Signatures valid")

    write_file(dota_path / AMT_Main.SIGNATURES, "DIGEST:0A1B2C3D\n")
    result = await AMT_Verify.check_mod_integration(dota_path)
    assert result == CheckResult(False, "Signature format invalid — re-patch required")

    write_file(dota_path / AMT_Main.GAME_INFO, '"GameInfo" { Game dota }')
    result = await AMT_Verify.check_mod_integration(dota_path)
    assert result == CheckResult(False, "Mod entry not in GameInfo")

    (dota_path / AMT_Main.GAME_INFO).unlink()
    assert await AMT_Verify.check_mod_integration(dota_path) == CheckResult(False, "Core game files missing")


@pytest.mark.asyncio
async def test_check_mod_integration_case_sensitive_patch_line(dota_path: Path) -> None:
    """The patch line is matched exactly, a lowercased copy is not accepted."""
    write_file(dota_path / AMT_Main.SIGNATURES, f"DIGEST:0A1B2C3D\n{AMT_Main.MOD_PATCH_LINE.lower()}\n")
    result = await AMT_Verify.check_mod_integration(dota_path)
    assert result == CheckResult(False, "Signature format invalid — re-patch required")


@pytest.mark.asyncio
async def test_check_game_patch(dota_path: Path) -> None:
    """Test AMT_Verify's `check_game_patch()`."""
    assert (await AMT_Verify.check_game_patch(dota_path)).detail.startswith("Signatures present (")
    (dota_path / AMT_Main.SIGNATURES).unlink()
    assert await AMT_Verify.check_game_patch(dota_path) == CheckResult(False, "dota.signatures missing")


@pytest.mark.asyncio
async def test_run_verification_idempotent(dota_path: Path) -> None:
    """Two runs over an unchanged tree give the same results."""
    first = completed_results(await collect(AMT_Verify.run_verification(dota_path, step_delay=0)))
    second = completed_results(await collect(AMT_Verify.run_verification(dota_path, step_delay=0)))
    assert first == second


@pytest.mark.asyncio
async def test_run_verification_invalid_path(dota_path: Path) -> None:
    """PathInvalidError is raised before any event is produced."""
    (dota_path / AMT_Main.STEAM_INF).unlink()
    events: list[AMT_Verify.VerificationEvent] = []
    with pytest.raises(AMT_Main.PathInvalidError):
        async for event in AMT_Verify.run_verification(dota_path, step_delay=0):
            events.append(event)  # noqa: PERF401
    assert events == []


@pytest.mark.asyncio
async def test_run_checks_isolates_exceptions() -> None:
    """A check that raises is reported as failed and the run continues."""

    async def explode() -> CheckResult:
        raise ValueError("bad vpk header")

    async def passes() -> CheckResult:
        return CheckResult(True, "ok")

    checks = (
        VerificationCheck(0, CheckId.MOD_PACKAGE, "Mod Package", explode),
        VerificationCheck(1, CheckId.DOTA_VERSION, "Dota Version", passes),
    )
    events = await collect(AMT_Verify.run_checks(checks))
    assert completed_results(events) == [CheckResult(False, "Error: bad vpk header"), CheckResult(True, "ok")]
    assert events[-1] == VerificationSummary(1, 2)


@pytest.mark.asyncio
async def test_run_checks_path_invalid_mid_run(dota_path: Path) -> None:
    """steam.inf vanishing after validation only fails the version check."""
    checks = AMT_Verify.build_checks(dota_path)
    (dota_path / AMT_Main.STEAM_INF).unlink()
    results = completed_results(await collect(AMT_Verify.run_checks(checks)))
    assert not results[1].passed
    assert results[1].detail.startswith("Error: [CFG_002]")
    assert results[0].passed and results[2].passed and results[3].passed


@pytest.mark.asyncio
async def test_run_checks_cancelled(dota_path: Path) -> None:
    """Cancelling stops the stream between checks and no summary is emitted."""
    completed: list[int] = []

    def cancelled() -> bool:
        return len(completed) >= 2

    events: list[AMT_Verify.VerificationEvent] = []
    async for event in AMT_Verify.run_checks(AMT_Verify.build_checks(dota_path), cancelled=cancelled):
        events.append(event)
        if isinstance(event, StepEvent) and event.phase is StepPhase.COMPLETED:
            completed.append(event.index)

    assert completed == [0, 1]
    assert len(events) == 4
    assert not any(isinstance(e, VerificationSummary) for e in events)


@pytest.mark.asyncio
async def test_run_checks_cancelled_before_start(dota_path: Path) -> None:
    events = await collect(AMT_Verify.run_checks(AMT_Verify.build_checks(dota_path), cancelled=lambda: True))
    assert events == []


@pytest.mark.asyncio
async def test_run_all(dota_path: Path) -> None:
    """Test AMT_Verify's `run_all()` callbacks."""
    started: list[int] = []
    finished: list[tuple[int, bool]] = []
    summary = await AMT_Verify.run_all(
        AMT_Verify.build_checks(dota_path),
        started.append,
        lambda index, result: finished.append((index, result.passed)),
    )
    assert started == [0, 1, 2, 3]
    assert finished == [(0, True), (1, True), (2, True), (3, True)]
    assert summary == VerificationSummary(4, 4)


@pytest.mark.asyncio
async def test_run_all_cancelled(bare_dota_path: Path) -> None:
    """A cancelled `run_all()` returns a partial summary."""
    finished: list[int] = []
    summary = await AMT_Verify.run_all(
        AMT_Verify.build_checks(bare_dota_path),
        lambda _: None,
        lambda index, _: finished.append(index),
        cancelled=lambda: len(finished) == 3,
    )
    assert finished == [0, 1, 2]
    assert summary.cancelled
    assert (summary.passed_count, summary.total_count) == (1, 4)


@pytest.mark.asyncio
async def test_verify_console(
    dota_path: Path, capsys: pytest.CaptureFixture[str], yaml_cache: AMT_Main.YamlSettingsCache
) -> None:
    """Test AMT_Verify's `verify_console()`."""
    assert yaml_cache is AMT_Main.yaml_cache
    AMT_Main.amt_settings(float, "Verify Step Delay", 0.0)
    assert await AMT_Verify.verify_console(dota_path) == 0
    output = capsys.readouterr().out
    assert "✔️ Mod Package : pak01_dir.vpk (2.1 KB)" in output
    assert "4/4 CHECKS PASSED" in output
    assert "VERSION STATUS" in output

    (dota_path / AMT_Main.STEAM_INF).unlink()
    assert await AMT_Verify.verify_console(dota_path) == 1
    assert "COULD NOT VERIFY YOUR MOD FILES" in capsys.readouterr().out
    AMT_Main.amt_settings(float, "Verify Step Delay", 0.2)


@pytest.mark.asyncio
async def test_verify_console_steam_inf_lost_after_run(
    dota_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    """steam.inf going unreadable before the change summary prints advice instead of a traceback."""

    def unreadable(_target_path: Path | str) -> AMT_Version.VersionInfo:
        raise AMT_Main.PathInvalidError("steam.inf could not be read")

    monkeypatch.setattr(AMT_Version, "reconcile", unreadable)
    monkeypatch.setattr(AMT_Main, "verify_step_delay", lambda: 0.0)
    assert await AMT_Verify.verify_console(dota_path) == 1
    output = capsys.readouterr().out
    assert "3/4 CHECKS PASSED" in output
    assert "COULD NOT VERIFY YOUR MOD FILES" in output
    assert "VERSION STATUS" not in output
