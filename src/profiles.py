import logging
from pathlib import Path

import tomlkit

from domain.settings import SimulatorSettings

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = 'default'


def profiles_dir() -> Path:
    """<project_root>/configs, where the bundled profiles live."""
    return Path(__file__).resolve().parent.parent / 'configs'


def list_profiles() -> list[str]:
    """Profile names without the extension."""
    folder = profiles_dir()
    if not folder.exists():
        return []
    return sorted(p.stem for p in folder.glob('*.toml') if p.is_file())


def profile_path(name: str) -> Path:
    return profiles_dir() / f'{name}.toml'


def default_profile() -> SimulatorSettings:
    """Built-in defaults, no file involved."""
    return SimulatorSettings()


def load_profile(name_or_path: str | Path) -> SimulatorSettings:
    """
    Load and validate a TOML profile into SimulatorSettings.

    Accepts either a profile name (without .toml) from the configs directory
    or a path to a TOML file. Sections and keys that are not recognised are
    ignored; missing ones take their defaults.
    """
    p = Path(name_or_path)
    path = p if p.suffix.lower() == '.toml' else profile_path(str(name_or_path))
    if not path.exists():
        msg = f'Profile not found: {path}'
        raise FileNotFoundError(msg)
    text = path.read_text(encoding='utf-8')
    data = tomlkit.parse(text).unwrap()
    settings = SimulatorSettings.model_validate(data)
    logger.info(
        'Profile %s loaded: elevation z%d r%d, context z%d r%d, store %s',
        path.name,
        settings.elevation.zoom,
        settings.elevation.ring_radius,
        settings.context.zoom,
        settings.context.ring_radius,
        'on' if settings.cache.enabled else 'off',
    )
    return settings


def save_profile(path: str | Path, settings: SimulatorSettings) -> Path:
    """Write settings to a TOML file (no atomic replace, no backup)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    text = tomlkit.dumps(settings.model_dump())
    path.write_text(text, encoding='utf-8')
    return path
