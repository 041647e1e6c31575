from macommune.core.config import Settings


def make_settings(tmp_path, **overrides) -> Settings:
    """Isolated configuration: store, documents and logo under tmp_path."""
    values = {
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'macommune.db'}",
        "documents_dir": tmp_path / "documents",
        "logo_path": tmp_path / "missing_logo.png",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)
