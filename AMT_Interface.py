import asyncio
import json
from collections.abc import Callable
from pathlib import Path

from PySide6.QtCore import QObject, Signal, Slot

import AMT_Main as AMain
import AMT_Status as AStatus
import AMT_Verify as AVerify
import AMT_Version as AVersion


class VerifyFilesWorker(QObject):
    """Runs the verification checks off the UI thread and reports each step as a signal."""

    check_started = Signal(int)
    check_completed = Signal(int, bool, str)
    # passed, total, show patch button
    all_done = Signal(int, int, bool)
    failed = Signal(str)
    finished = Signal()

    def __init__(
        self,
        target_path: Path | str,
        on_patch_requested: Callable[[], None] | None = None,
        step_delay: float | None = None,
    ) -> None:
        super().__init__()
        self.target_path = Path(target_path)
        self.on_patch_requested = on_patch_requested
        self.step_delay = step_delay
        self._should_run = True

    def stop(self) -> None:
        """Cancel the run at the next step boundary. No all_done is emitted afterwards."""
        self._should_run = False

    async def _verify(self) -> None:
        async for event in AVerify.run_verification(
            self.target_path, step_delay=self.step_delay, cancelled=lambda: not self._should_run
        ):
            match event:
                case AVerify.StepEvent(phase=AVerify.StepPhase.STARTED):
                    self.check_started.emit(event.index)
                case AVerify.StepEvent(result=AVerify.CheckResult() as result):
                    self.check_completed.emit(event.index, result.passed, result.detail)
                case AVerify.VerificationSummary():
                    show_patch = event.offers_patch(self.on_patch_requested is not None)
                    self.all_done.emit(event.passed_count, event.total_count, show_patch)

    @Slot()
    def run(self) -> None:
        try:
            asyncio.run(self._verify())
        except AMain.PathInvalidError as e:
            self.failed.emit(str(e))
        except Exception as e:  # noqa: BLE001
            AMain.logger.error(f"> > > ERROR (VerifyFilesWorker) : {e}")
            self.failed.emit(str(e))
        finally:
            self.finished.emit()


class StatusDetailsWorker(QObject):
    """Builds the status view payload and hands it over as a JSON string."""

    populated = Signal(str)
    failed = Signal(str)
    finished = Signal()

    def __init__(self, target_path: Path | str | None, on_patch_requested: Callable[[], None] | None = None) -> None:
        super().__init__()
        self.target_path = target_path
        self.on_patch_requested = on_patch_requested

    def build_payload(self) -> AStatus.DiagnosticsPayload:
        status_info = AStatus.get_detailed_status(self.target_path)
        try:
            version_info = AVersion.reconcile(self.target_path) if self.target_path else AVersion.VersionInfo()
        except AMain.PathInvalidError as e:
            # The status already carries the path problem.
            AMain.logger.debug(f"- - - Version info unavailable : {e}")
            version_info = AVersion.VersionInfo()
        return AStatus.derive_diagnostics(status_info, version_info, self.on_patch_requested)

    @Slot()
    def run(self) -> None:
        try:
            self.populated.emit(json.dumps(self.build_payload().to_dict()))
        except Exception as e:  # noqa: BLE001
            AMain.logger.error(f"> > > ERROR (StatusDetailsWorker) : {e}")
            self.failed.emit(str(e))
        finally:
            self.finished.emit()
