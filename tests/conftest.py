import json
import shutil
from collections.abc import Generator
from pathlib import Path

import pytest

import AMT_Main

RUNTIME_FILES = (
    "AMT Settings.yaml",
    "AMT Journal.log",
)

STEAM_INF_TEXT = """ClientVersion=6234
ServerVersion=6234
PatchVersion=1.0.0
ProductName=dota2
appID=570
SourceRevision=9876543
VersionDate=Oct 15 2026
VersionTime=14:32:10
"""

SIGNATURES_TEXT = f"""DIGEST:0A1B2C3D4E5F60718293A4B5C6D7E8F9
...\\..\\..\\dota\\pak01_dir.vpk~SHA1:ABCDEF0123456789ABCDEF0123456789ABCDEF01;CRC:11223344
{AMT_Main.MOD_PATCH_LINE}
"""

GAME_INFO_TEXT = """"GameInfo"
{
    FileSystem
    {
        SearchPaths
        {
            Game_Language    dota_*LANGUAGE*
            Game             _Ardysa
            Game             dota
        }
    }
}
"""


@pytest.fixture(scope="session", autouse=True)
def _move_user_files() -> Generator[None]:
    """Automatically moves all of AMT's runtime-generated files out of the way during testing and restores them after.

    Any files created during testing are deleted.
    """
    for file in RUNTIME_FILES:
        file_path = Path(file)
        if file_path.exists():
            backup_path = file_path.with_name(f"test_temp-{file_path.name}")
            file_path.rename(backup_path)
            assert backup_path.exists(), f"Failed to rename {file_path.name} to {backup_path.name}"
        assert not file_path.exists(), f"Failed to rename {file_path.name}"

    yield

    for file in RUNTIME_FILES:
        file_path = Path(file)
        if file_path.is_file():
            file_path.unlink()
        elif file_path.is_dir():
            shutil.rmtree(file_path)
        backup_path = file_path.with_name(f"test_temp-{file_path.name}")
        if backup_path.exists():
            backup_path.rename(file_path)
            assert file_path.exists(), f"Failed to rename {backup_path.name} to {file_path.name}"
        assert not backup_path.exists(), f"Failed to remove {backup_path.name}"


@pytest.fixture(scope="session")
def yaml_cache() -> AMT_Main.YamlSettingsCache:
    """Initialize AMT_Main's YAML Cache.

    This is required for any test that entails calls to:
    - `yaml_settings()`
    - `get_setting()`
    - `amt_settings()`
    """
    AMT_Main.yaml_cache = AMT_Main.YamlSettingsCache()
    assert isinstance(AMT_Main.yaml_cache.cache, dict), "cache dict not created"
    assert isinstance(AMT_Main.yaml_cache.file_mod_times, dict), "file_mod_times dict not created"
    return AMT_Main.yaml_cache


def write_file(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def dota_path(tmp_path: Path) -> Path:
    """A fake Dota 2 install with the ModsPack fully installed and patched for the current build."""
    root = tmp_path / "dota 2 beta"
    write_file(root / AMT_Main.STEAM_INF, STEAM_INF_TEXT)
    write_file(root / AMT_Main.SIGNATURES, SIGNATURES_TEXT)
    write_file(root / AMT_Main.GAME_INFO, GAME_INFO_TEXT)
    write_file(root / AMT_Main.DOTA2_EXE, "MZ")
    write_file(root / AMT_Main.MODS_VPK, "VPK" * 700)
    write_file(root / AMT_Main.MODS_VERSION, "2.4.1\n")
    write_file(
        root / AMT_Main.VERSION_JSON,
        json.dumps({"VersionDate": "Oct 15 2026", "Build": "6234", "PatchedAt": "2026-10-15T18:04:22"}),
    )
    return root


@pytest.fixture
def bare_dota_path(dota_path: Path) -> Path:
    """The same install with the ModsPack folder removed and gameinfo restored."""
    shutil.rmtree(dota_path / AMT_Main.MODS_FOLDER)
    write_file(dota_path / AMT_Main.GAME_INFO, GAME_INFO_TEXT.replace("_Ardysa", "dota"))
    return dota_path
