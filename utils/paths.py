from pathlib import Path

from platformdirs import user_data_dir, user_log_dir

APP_NAME = "WorkshopEconomy"
APP_VENDOR = "Workshop"

DATA_DIR = Path(user_data_dir(APP_NAME, APP_VENDOR))
LOG_DIR = Path(user_log_dir(APP_NAME, APP_VENDOR))
DB_DIR = DATA_DIR / "data"
DB_PATH = DB_DIR / "workshop.db"
CONFIG_PATH = DATA_DIR / "config.yaml"


def init_app_paths() -> None:
    for _p in (DATA_DIR, LOG_DIR, DB_DIR):
        _p.mkdir(parents=True, exist_ok=True)

    legacy_config = Path("config.yaml")
    if not CONFIG_PATH.exists() and legacy_config.exists():
        CONFIG_PATH.write_bytes(legacy_config.read_bytes())
